import os
import logging

import httpx
import redis
from flask import Flask, request, jsonify, Response
from werkzeug.middleware.proxy_fix import ProxyFix

from admission import AdmissionGate, OverflowQueue, Dispatcher
from badge import render, fetch_shields_badge
from config import (
    SUPPORTED_TOOLCHAINS,
    DEFAULT_TAG,
    REDIS_URL,
    COVER_Q_MAX,
    RECENT_LIMIT,
)
from coverage_service import CoverageService
from k8s_client import K8sClient
from models import Outcome
from runner_service import RunnerService
from store import create_redis_client, ResultCache, InProgressRegistry, BadgeCache
from utils import validate_repo

# Configure logging
logging.basicConfig(level=logging.INFO,
                    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s')
logger = logging.getLogger(__name__)

STATUS_CODES = {
    Outcome.ready: 200,
    Outcome.queued: 200,
    Outcome.in_progress: 200,
    Outcome.no_tests_found: 200,
    Outcome.unsupported_toolchain: 400,
    Outcome.repo_not_found: 404,
    Outcome.unknown_error: 502,
}

NO_CACHE_HEADERS = {
    'Cache-Control': 'private, max-age=0, no-cache',
    'Pragma': 'no-cache',
    'Expires': '-1',
}


def build_components(redis_client=None, k8s_client=None):
    """
    Wire the coverage service and its collaborators.

    Returns:
        dict: service, dispatcher, badge_cache, redis and k8s clients
    """
    redis_client = redis_client or create_redis_client(REDIS_URL)
    if k8s_client is None:
        is_mock_mode = os.environ.get("K8S_MOCK_MODE", "true").lower() in ("true", "1", "yes")
        k8s_client = K8sClient(mock_mode=is_mock_mode)
        logger.info(f"Kubernetes client initialized (mock mode: {k8s_client.mock_mode})")

    cache = ResultCache(redis_client)
    registry = InProgressRegistry(redis_client)
    gate = AdmissionGate(COVER_Q_MAX)
    service = CoverageService(
        runner=RunnerService(k8s_client),
        cache=cache,
        registry=registry,
        gate=gate,
        queue=OverflowQueue(redis_client),
    )
    dispatcher = Dispatcher(redis_client, registry, cache, gate, service.run_job)
    return {
        'service': service,
        'dispatcher': dispatcher,
        'badge_cache': BadgeCache(redis_client),
        'redis': redis_client,
        'k8s': k8s_client,
    }


def create_app(components=None):
    """Create the Flask application around a set of components."""
    components = components or build_components()
    service = components['service']
    badge_cache = components['badge_cache']

    app = Flask(__name__)
    app.secret_key = os.environ.get("SESSION_SECRET")
    app.wsgi_app = ProxyFix(app.wsgi_app, x_proto=1, x_host=1)
    app.config['COMPONENTS'] = components

    def recent_repositories():
        return [r.to_dict() for r in service.recent_results(RECENT_LIMIT)]

    @app.route('/', methods=['GET'])
    def index():
        """Service description with recently covered repositories."""
        return jsonify({
            'name': 'cover.run',
            'description': 'Test coverage badges for Go repositories',
            'endpoints': {
                '/health': 'Health check endpoint',
                '/go/{repo}.json': 'Coverage result as JSON',
                '/go/{repo}.svg': 'Coverage badge (style=flat|curved, source=shields)',
                '/go/{repo}': 'Coverage result with recently covered repositories',
            },
            'supported_tags': list(SUPPORTED_TOOLCHAINS.keys()),
            'default_tag': DEFAULT_TAG,
            'repositories': recent_repositories(),
        })

    @app.route('/health', methods=['GET'])
    def health_check():
        """Health check endpoint for the service."""
        k8s_client = components.get('k8s')
        is_mock = bool(k8s_client and getattr(k8s_client, 'mock_mode', False))
        is_connected = bool(k8s_client and k8s_client.is_connected())

        try:
            store_ok = bool(components['redis'].ping())
        except redis.RedisError as e:
            logger.error(f"Redis health check failed: {e}")
            store_ok = False

        health_status = {
            'status': 'ok' if store_ok else 'error',
            'store': 'ok' if store_ok else 'error',
            'kubernetes_client': 'ok (mock mode)' if is_mock else ('ok' if is_connected else 'error'),
            'supported_tags': list(SUPPORTED_TOOLCHAINS.keys()),
            'admission': {
                'limit': service.gate.limit,
                'in_use': service.gate.in_use,
            },
        }

        if not store_ok or not (is_connected or is_mock):
            return jsonify(health_status), 500
        return jsonify(health_status)

    @app.route('/go', methods=['GET'])
    @app.route('/go/<path:repo>', methods=['GET'])
    def repository(repo=None):
        """
        Coverage for a repository.

        The suffix of the path selects the representation: ``.json`` for the
        raw result, ``.svg`` for the badge, none for the result together
        with recently covered repositories.
        """
        repo = request.args.get('repo') or repo or ''
        tag = request.args.get('tag') or DEFAULT_TAG

        if repo.endswith('.svg'):
            return repository_badge(repo[:-len('.svg')], tag)

        as_json = repo.endswith('.json')
        if as_json:
            repo = repo[:-len('.json')]

        if not validate_repo(repo):
            return jsonify({'error': f'Invalid repository: {repo}'}), 400

        result, outcome = service.resolve(repo, tag)
        body = result.to_dict()
        body['Outcome'] = outcome.value
        if not as_json:
            body['repositories'] = recent_repositories()
        return jsonify(body), STATUS_CODES[outcome]

    def repository_badge(repo, tag):
        style = request.args.get('style') or 'flat'
        source = request.args.get('source', '')

        if validate_repo(repo):
            color, status = service.badge_status(repo, tag)
        else:
            color, status = 'lightgrey', 'invalid'

        if source == 'shields':
            svg = badge_cache.get(color, style, status)
            if svg is None:
                try:
                    svg = fetch_shields_badge(color, style, status)
                except httpx.HTTPError as e:
                    logger.error(f"Fetching badge from shields.io failed: {e}")
                    return jsonify({'error': 'Badge service unavailable'}), 502
                badge_cache.set(color, style, status, svg)
        else:
            svg = render(color, style, status)

        headers = dict(NO_CACHE_HEADERS)
        headers['Vary'] = 'Accept-Encoding'
        return Response(svg, mimetype='image/svg+xml', headers=headers)

    @app.errorhandler(404)
    def page_not_found(e):
        """Handle 404 errors."""
        return jsonify({"error": "Resource not found"}), 404

    @app.errorhandler(500)
    def server_error(e):
        """Handle 500 errors."""
        return jsonify({"error": "Internal server error"}), 500

    return app


def start_dispatcher(app):
    """Start the overflow dispatcher unless disabled with COVER_DISPATCHER=false."""
    if os.environ.get("COVER_DISPATCHER", "true").lower() in ("true", "1", "yes"):
        app.config['COMPONENTS']['dispatcher'].start()


def make_wsgi_app():
    """WSGI entry point, e.g. ``gunicorn "app:make_wsgi_app()"``."""
    app = create_app()
    start_dispatcher(app)
    return app


def main():
    port = int(os.environ.get("PORT", "3000"))
    make_wsgi_app().run(host="0.0.0.0", port=port, debug=False)


if __name__ == "__main__":
    main()
