from flask import Blueprint, request, jsonify, current_app
from datetime import datetime
from pesos.services import FeedSynchronizer, SyncError, get_user_items

api_bp = Blueprint('api', __name__)


@api_bp.route('/health', methods=['GET'])
def health_check():
    """Health check endpoint."""
    return jsonify({
        'status': 'healthy',
        'timestamp': datetime.utcnow().isoformat()
    })


@api_bp.route('/users/<user_id>/items', methods=['GET'])
def list_user_items(user_id):
    """
    Items stored for a user, newest first.

    Query params:
    - limit: Max items to return (default 50, max 500)
    - include_description: Include item content (true/false)
    """
    limit = min(request.args.get('limit', 50, type=int), 500)
    include_description = request.args.get('include_description', '').lower() == 'true'

    items = get_user_items(user_id, limit=limit)
    return jsonify({
        'items': [i.to_dict(include_description=include_description) for i in items],
        'count': len(items)
    })


@api_bp.route('/items/<slug>/refresh', methods=['POST'])
def refresh_item(slug):
    """Re-read one item from its feed and update its title, content and date."""
    synchronizer = FeedSynchronizer.from_app(current_app)

    try:
        item = synchronizer.refresh_item(slug)
    except SyncError as e:
        return jsonify({'error': f'Refresh failed: {str(e)}'}), 502

    if item is None:
        return jsonify({'error': f'Could not refresh item "{slug}"'}), 404
    return jsonify({'message': 'Item refreshed', 'item': item.to_dict(include_description=True)})
