# Overview: Flask API routes for offline sync; parses the batch envelope and returns per-operation results.

"""Offline sync API routes (device token required)"""

from flask import Blueprint, request, jsonify, g, current_app

from ..decorators import require_auth
from ..services.sync_log_service import find_operation
from ..services.sync_service import (
    SyncError,
    SyncBatchInterrupted,
    parse_operations,
)


sync_bp = Blueprint("sync", __name__, url_prefix="/api/sync")


def _sync_service():
    return current_app.extensions["offline_sync"]


@sync_bp.post("/apply")
@require_auth
def apply_operations_route():
    """
    Apply a batch of queued offline operations.

    Body:
        {"operations": [{client_op_id, type, payload, occurred_at?, branch_id?}],
         "stop_on_failure": false}

    Returns:
    - 200: {"results": [...], "stopped_at"?: int}
    - 400: malformed envelope (nothing applied)
    - 500: infrastructure failure; "results" holds the operations that were
      committed before it
    """
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        return jsonify({"error": "Invalid JSON body"}), 400

    try:
        stop_on_failure = data.get("stop_on_failure", False)
        if not isinstance(stop_on_failure, bool):
            raise SyncError("stop_on_failure must be a boolean")

        operations = parse_operations(
            data.get("operations"),
            max_batch_size=current_app.config["SYNC_MAX_BATCH_SIZE"],
        )

        response = _sync_service().apply_operations(
            g.org_id,
            g.store_id,
            g.employee_id,
            g.actor_role,
            operations,
            stop_on_failure=stop_on_failure,
        )
        return jsonify(response), 200

    except SyncError as e:
        return jsonify({"error": e.message, "details": e.details}), 400
    except SyncBatchInterrupted as e:
        current_app.logger.exception("Offline sync batch interrupted at index %s", e.index)
        return jsonify({
            "error": "Internal server error",
            "results": e.results,
            "failed_index": e.index,
        }), 500
    except Exception:
        current_app.logger.exception("Failed to apply offline operations")
        return jsonify({"error": "Internal server error"}), 500


@sync_bp.get("/operations/<string:client_op_id>")
@require_auth
def get_operation_route(client_op_id: str):
    """Stored log entry for one client operation in the caller's tenant."""
    entry = find_operation(g.org_id, client_op_id)
    if entry is None:
        return jsonify({"error": "Operation not found"}), 404
    return jsonify({"operation": entry.to_dict()}), 200
