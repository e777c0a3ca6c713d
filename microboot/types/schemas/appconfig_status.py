import logging
from marshmallow import fields, pre_load
from microboot.types.base import BaseSchema
from microboot.types.models.appconfig_status import AppConfigStatus

logger = logging.getLogger(__name__)

TIMESTAMP_KEYS = ("lastSyncTime", "lastSecretRotationTime")


class AppConfigStatusSchema(BaseSchema):
    __model__ = AppConfigStatus

    conditions = fields.List(
        fields.Dict(keys=fields.Str(), values=fields.Raw()),
        data_key="conditions",
        load_default=list,
    )
    last_sync_time = fields.Str(
        data_key="lastSyncTime", allow_none=True, load_default=None
    )
    last_secret_rotation_time = fields.Str(
        data_key="lastSecretRotationTime", allow_none=True, load_default=None
    )
    created_resources = fields.List(
        fields.Str(), data_key="createdResources", load_default=list
    )

    @pre_load
    def coerce_malformed(self, data, **kwargs):
        """Coerce values of the wrong type instead of rejecting the status.

        Timestamps and resource references become strings, so they are later
        treated as unreadable. Containers of the wrong type become empty.
        """
        data = dict(data)
        for key in TIMESTAMP_KEYS:
            value = data.get(key)
            if value is not None and not isinstance(value, str):
                logger.warning(f"Status field '{key}' is not a string: {value!r}")
                data[key] = str(value)

        refs = data.get("createdResources")
        if refs is not None:
            if not isinstance(refs, list):
                logger.warning(f"Status field 'createdResources' is not a list: {refs!r}")
                refs = []
            data["createdResources"] = [
                ref if isinstance(ref, str) else str(ref) for ref in refs if ref is not None
            ]

        conditions = data.get("conditions")
        if conditions is not None:
            if not isinstance(conditions, list):
                logger.warning(f"Status field 'conditions' is not a list: {conditions!r}")
                conditions = []
            data["conditions"] = [c for c in conditions if isinstance(c, dict)]
        return data
