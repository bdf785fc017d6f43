"""OpenTelemetry tracer access for import jobs.

crmimport only depends on the OTel API. When the host process installs an
SDK TracerProvider the import spans are exported; otherwise they are no-ops.
"""

from __future__ import annotations

from opentelemetry import trace

_TRACER_NAME = "crmimport"

IMPORT_SPAN = "crmimport.import"


def get_tracer() -> trace.Tracer:
    return trace.get_tracer(_TRACER_NAME)
