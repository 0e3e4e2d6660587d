import hmac
from flask import Blueprint, request, jsonify, current_app
from pesos import get_run_status
from pesos.services import FeedSynchronizer, ConcurrencyConflict

sync_bp = Blueprint('sync', __name__)


def _flag(name):
    return request.args.get(name, '').lower() == 'true'


def _is_cron_request():
    token = current_app.config.get('CRON_SECRET_TOKEN')
    if not token:
        return False
    authorization = request.headers.get('Authorization', '')
    return hmac.compare_digest(authorization, f'Bearer {token}')


@sync_bp.route('/update-all-feeds', methods=['GET', 'POST'])
def update_all_feeds():
    """
    Run a full synchronization and wait for it to finish.

    Query params:
    - clear_failed: Forget failure backoff before running (true/false)
    - triggered_by: Audit label for the caller (default: manual)
    """
    status = get_run_status(current_app)
    synchronizer = FeedSynchronizer.from_app(current_app)

    try:
        stats = synchronizer.run(
            clear_failed=_flag('clear_failed'),
            triggered_by=request.args.get('triggered_by', 'manual'),
        )
    except ConcurrencyConflict as e:
        snapshot = status.snapshot()
        return jsonify({
            'error': str(e),
            'last_error': snapshot['last_error'],
            'last_run': snapshot['last_run'],
            'logs': snapshot['logs'],
        }), 409
    except Exception as e:
        return jsonify({
            'success': False,
            'error': str(e),
            'logs': status.snapshot()['logs'],
        }), 500

    body = {
        'success': stats.success,
        'message': stats.summary(),
        'stats': stats.to_dict(),
        'logs': status.snapshot()['logs'],
    }
    if not stats.success:
        body['error'] = status.last_error
        return jsonify(body), 500
    return jsonify(body)


@sync_bp.route('/update-all-feeds/status', methods=['GET'])
def update_status():
    """
    Current run status.

    Dashboard polling passes manual=true; any other caller (e.g. a
    scheduler) must send the cron bearer token.
    """
    if not _flag('manual') and not _is_cron_request():
        return jsonify({'error': 'Unauthorized'}), 401

    return jsonify(get_run_status(current_app).snapshot())


@sync_bp.route('/update-all-feeds/failed-feeds', methods=['DELETE'])
def clear_failed_feeds():
    """Drop failure backoff so every source is retried on the next run."""
    cleared = get_run_status(current_app).failures.clear()
    return jsonify({'message': f'Cleared {cleared} failed feeds', 'cleared': cleared})
