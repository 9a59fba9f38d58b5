from flask import current_app
from flask_jwt_extended import jwt_required
from flask_smorest import Blueprint

from .schemas import SyncRequestSchema, SyncResponseSchema
from .services import ROLE_ADMIN, ROLE_TEACHER
from .utils import get_sync_service, require_role

blp = Blueprint("sync", __name__, description="Offline client reconciliation")


@blp.route("/sync", methods=["POST"])
@blp.arguments(SyncRequestSchema)
@blp.response(200, SyncResponseSchema)
@jwt_required()
def sync(data):
    require_role(ROLE_ADMIN, ROLE_TEACHER)
    current_app.logger.info(
        f"Sync request with {len(data['changes'])} changes since {data.get('last_sync_marker')}"
    )
    return get_sync_service().sync(data["changes"], data.get("last_sync_marker"))
