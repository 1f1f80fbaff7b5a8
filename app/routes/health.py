"""Health check API.

GET /api/health
Returns app status for load balancers and uptime monitors. Never touches the
database: database.configured only says whether DATABASE_URL is set.
"""

from datetime import datetime, timezone

from flask import Blueprint, current_app, jsonify

health_bp = Blueprint('health', __name__, url_prefix='/api')


@health_bp.route('/health')
def health():
    config = current_app.config
    return jsonify({
        'status': 'ok',
        'app': config['APP_NAME'],
        'version': config['APP_VERSION'],
        'timestamp': datetime.now(timezone.utc).isoformat().replace('+00:00', 'Z'),
        'database': {
            'configured': bool(config.get('DATABASE_URL')),
            'type': 'PostgreSQL',
        },
        'environment': config.get('ENVIRONMENT') or 'development',
    })
