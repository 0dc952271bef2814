"""Response classes for ActivityStreams and JRD documents."""

from fastapi.responses import JSONResponse

from activitypub_stage.services.signatures import ACTIVITY_JSON
from activitypub_stage.services.webfinger import JRD_CONTENT_TYPE


class ActivityJSONResponse(JSONResponse):
    media_type = ACTIVITY_JSON


class JRDResponse(JSONResponse):
    media_type = JRD_CONTENT_TYPE
