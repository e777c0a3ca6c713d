import datetime
import kopf
from microboot.resources.sidecar import injection_registry


# Liveness checks
@kopf.on.probe(id='now')
def get_current_timestamp(**kwargs):
    return datetime.datetime.now(datetime.timezone.utc).isoformat()


@kopf.on.probe(id='sidecarRegistrations')
def get_sidecar_registrations(**kwargs):
    return len(injection_registry)
