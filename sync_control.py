"""Control surface consumed by the admin API: trigger, status, interval."""
import json
import logging
from typing import Any, Dict, Optional

from scheduler.sync_scheduler import (
    RUN_IN_PROGRESS,
    IntervalValidationError,
    SyncScheduler,
)

logger = logging.getLogger(__name__)


def _response(status_code: int, body: Dict[str, Any]) -> Dict[str, Any]:
    return {'statusCode': status_code, 'body': json.dumps(body)}


def handle_control_request(
    scheduler: SyncScheduler,
    action: str,
    payload: Optional[Dict[str, Any]] = None
) -> Dict[str, Any]:
    """
    Dispatch an admin control request to the scheduler.

    Args:
        scheduler: Running scheduler instance
        action: One of 'sync', 'status', 'interval'
        payload: Action parameters ('debug' for sync, 'minutes' for interval)

    Returns:
        Response dict with statusCode and JSON body
    """
    payload = payload or {}

    if action == 'sync':
        result = scheduler.trigger_now(debug=bool(payload.get('debug')))
        if result.error == RUN_IN_PROGRESS:
            return _response(409, result.to_dict())
        return _response(200 if result.success else 500, result.to_dict())

    if action == 'status':
        return _response(200, scheduler.status().to_dict())

    if action == 'interval':
        try:
            minutes = scheduler.set_interval(payload.get('minutes'))
        except IntervalValidationError as e:
            logger.warning(f"Rejected interval change: {e}")
            return _response(400, {
                'error': 'Invalid interval (5-120 minutes)',
                'detail': str(e)
            })
        return _response(200, {'success': True, 'interval_minutes': minutes})

    return _response(400, {'error': f"Unknown action '{action}'"})
