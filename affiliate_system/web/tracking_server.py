# affiliate_system/web/tracking_server.py
"""
HTTP boundary of the tracking core:
- POST /postback/{programName}  sale reports from partner networks
- POST /tracking/visit          server-side mirror of the amb_ref cookie
- GET  /go/{programId}          outbound merchant redirect
- GET  /health
"""

import asyncio
import hmac
import json
import logging
import time
from collections import defaultdict, deque
from datetime import datetime
from typing import Deque, Dict, Optional

from aiohttp import web
from pydantic import ValidationError

from models import AffiliateProgram, Conversion, ConversionStatus
from affiliate_system.errors import PostbackValidationError, IllegalTransitionError
from affiliate_system.schemas.postback import parsePostback, variantFor, QUERY_NETWORKS, SaleReport
from affiliate_system.schemas.tracking import VisitRequest
from affiliate_system.services.attribution_service import AttributionService
from affiliate_system.services.click_service import ClickService
from affiliate_system.services.conversion_service import ConversionService
import config

logger = logging.getLogger(__name__)

RECONCILIATION_ACTOR = "postback"


class RateLimiter:
    """Per-client sliding window over a monotonic clock."""

    def __init__(self, max_requests: int = 10, time_window: int = 60):
        self.max_requests = max_requests
        self.time_window = time_window  # seconds
        self.requests: Dict[str, Deque[float]] = defaultdict(deque)

    def is_allowed(self, client_id: str) -> bool:
        now = time.monotonic()
        window = self.requests[client_id]
        while window and window[0] <= now - self.time_window:
            window.popleft()

        if len(window) >= self.max_requests:
            return False
        window.append(now)
        return True

    def prune(self) -> int:
        """Forget clients idle for a whole window. Returns how many were dropped."""
        cutoff = time.monotonic() - self.time_window
        idle = [client_id for client_id, window in self.requests.items()
                if not window or window[-1] <= cutoff]
        for client_id in idle:
            del self.requests[client_id]
        return len(idle)

    async def cleanup_loop(self):
        while True:
            await asyncio.sleep(300)
            dropped = self.prune()
            if dropped:
                logger.debug(f"Dropped {dropped} idle rate limit entries")


class TrackingServer:
    """aiohttp application wrapping the attribution & conversion services"""

    def __init__(self, session_factory=None, rate_limiter: Optional[RateLimiter] = None):
        if session_factory is None:
            from init import Session
            session_factory = Session
        self.session_factory = session_factory

        self.app = web.Application()
        self.rate_limiter = rate_limiter or RateLimiter(
            max_requests=config.POSTBACK_RATE_LIMIT_REQUESTS,
            time_window=config.POSTBACK_RATE_LIMIT_WINDOW
        )

        # Metrics
        self.request_count = 0
        self.error_count = 0
        self._cleanup_task = None

        self.setup_routes()
        self.setup_middleware()
        self.app.on_startup.append(self._on_startup)
        self.app.on_cleanup.append(self._on_cleanup)

    def setup_routes(self):
        self.app.router.add_post('/postback/{programName}', self.handle_postback)
        self.app.router.add_get('/postback/{programName}', self.handle_postback)
        self.app.router.add_post('/tracking/visit', self.handle_visit)
        self.app.router.add_get('/go/{programId}', self.handle_go)
        self.app.router.add_get('/health', self.handle_health)

    def setup_middleware(self):
        @web.middleware
        async def security_middleware(request, handler):
            client_ip = self.get_client_ip(request)
            logger.info(f"Request from {client_ip}: {request.method} {request.path}")
            self.request_count += 1

            if request.path != '/health' and not self.rate_limiter.is_allowed(client_ip):
                logger.warning(f"Rate limit exceeded for IP: {client_ip}")
                return web.json_response({'error': 'Too Many Requests'}, status=429)

            try:
                return await handler(request)
            except web.HTTPException:
                raise
            except Exception as e:
                logger.error(f"Error processing request: {e}", exc_info=True)
                self.error_count += 1
                return web.json_response({'error': 'Internal Server Error'}, status=500)

        self.app.middlewares.append(security_middleware)

    async def _on_startup(self, app):
        self._cleanup_task = asyncio.create_task(self.rate_limiter.cleanup_loop())

    async def _on_cleanup(self, app):
        if self._cleanup_task and not self._cleanup_task.done():
            self._cleanup_task.cancel()
            try:
                await self._cleanup_task
            except asyncio.CancelledError:
                pass

    def get_client_ip(self, request: web.Request) -> str:
        """Get real client IP from request"""
        if 'X-Forwarded-For' in request.headers:
            return request.headers['X-Forwarded-For'].split(',')[0].strip()
        if 'X-Real-IP' in request.headers:
            return request.headers['X-Real-IP']
        if request.remote:
            return request.remote
        return 'unknown'

    # =========================================================================
    # POSTBACK
    # =========================================================================

    async def handle_postback(self, request: web.Request) -> web.Response:
        programName = request.match_info['programName']

        with self.session_factory() as session:
            program = session.query(AffiliateProgram).filter_by(name=programName).first()
            if not program or not program.isActive:
                logger.warning(f"[Postback] Program not found or inactive: {programName}")
                return web.json_response({'error': 'Unknown program'}, status=404)

            body = {}
            if variantFor(program.network) not in QUERY_NETWORKS:
                raw = await request.text()
                if raw:
                    try:
                        body = json.loads(raw)
                    except json.JSONDecodeError:
                        return web.json_response({'error': 'Body is not valid JSON'}, status=400)

            try:
                report = parsePostback(program.network, dict(request.query), body)
            except PostbackValidationError as e:
                logger.warning(f"[Postback] Rejected payload for {programName}: {e.details}")
                return web.json_response(e.toDict(), status=400)

            if program.postbackSecret and not hmac.compare_digest(
                    (report.secret or '').encode('utf-8'),
                    program.postbackSecret.encode('utf-8')):
                logger.warning(f"[Postback] Secret mismatch for program {programName}")
                return web.json_response({'error': 'Forbidden'}, status=403)

            try:
                conversion = await self.apply_report(ConversionService(session), program, report)
            except IllegalTransitionError as e:
                logger.warning(f"[Postback] {e.message}")
                return web.json_response(e.toDict(), status=409)

            return web.json_response({
                'received': True,
                'conversionId': conversion.conversionID,
                'status': conversion.status
            })

    async def apply_report(self, service: ConversionService, program: AffiliateProgram,
                           report: SaleReport) -> Conversion:
        """
        Map one report to transitions. Redelivery of a report whose status
        the conversion already has is a no-op.
        """
        conversion = await service.findByOrder(program.programID, report.orderRef)
        if conversion is None:
            conversion = await service.create(
                program.programID,
                report.orderRef,
                report.amount,
                report.ambassadorRef,
                commission=report.commission,
                attributionMethod="postback",
                actorId=RECONCILIATION_ACTOR
            )

        if report.status == ConversionStatus.CONFIRMED:
            if conversion.status in (ConversionStatus.CONFIRMED, ConversionStatus.PAID):
                return conversion
            return await service.confirm(conversion.conversionID, actorId=RECONCILIATION_ACTOR)

        if report.status == ConversionStatus.CANCELLED:
            if conversion.status == ConversionStatus.CANCELLED:
                return conversion
            return await service.cancel(conversion.conversionID, "Cancelled by network",
                                        actorId=RECONCILIATION_ACTOR)

        return conversion

    # =========================================================================
    # VISITS & REDIRECTS
    # =========================================================================

    async def handle_visit(self, request: web.Request) -> web.Response:
        try:
            payload = VisitRequest.model_validate(await request.json())
        except (json.JSONDecodeError, ValidationError) as e:
            return web.json_response({'error': 'Malformed visit payload', 'details': str(e)}, status=400)

        with self.session_factory() as session:
            attribution = AttributionService(session)
            # The cookie id is mirrored; a new one comes back only when it was malformed
            visitorId = await attribution.ensureVisitor(payload.visitor_id)
            visit = await attribution.recordVisit(
                visitorId,
                payload.ref,
                landingPage=payload.url,
                sourceUrl=request.headers.get('Referer'),
                ipAddress=self.get_client_ip(request),
                userAgent=request.headers.get('User-Agent')
            )
            return web.json_response({'visitId': visit.visitID, 'visitorId': visitorId}, status=201)

    async def handle_go(self, request: web.Request) -> web.Response:
        try:
            programId = int(request.match_info['programId'])
        except ValueError:
            return web.json_response({'error': 'Merchant unavailable'}, status=404)

        with self.session_factory() as session:
            attribution = AttributionService(session)
            cookieVisitorId = request.cookies.get(config.COOKIE_VISITOR_ID)
            visitorId = await attribution.ensureVisitor(cookieVisitorId)

            url = await ClickService(session, attribution).trackClick(
                visitorId,
                request.cookies.get(config.COOKIE_AMB_REF),
                programId,
                productUrl=request.query.get('url')
            )

        if not url:
            return web.json_response({'error': 'Merchant unavailable'}, status=404)

        response = web.Response(status=302, headers={'Location': url})
        if visitorId != cookieVisitorId:
            response.set_cookie(
                config.COOKIE_VISITOR_ID,
                visitorId,
                max_age=config.VISITOR_ID_TTL_DAYS * 24 * 3600,
                httponly=True,
                samesite='Lax'
            )
        return response

    async def handle_health(self, request: web.Request) -> web.Response:
        return web.json_response({
            'status': 'ok',
            'timestamp': datetime.now().isoformat(),
            'service': 'affiliate-tracking',
            'requests': self.request_count,
            'errors': self.error_count
        })

    async def start(self, host: str = None, port: int = None):
        """Start the tracking server; returns the runner for cleanup."""
        host = host or config.POSTBACK_HOST
        port = port or config.POSTBACK_PORT

        runner = web.AppRunner(self.app)
        await runner.setup()
        site = web.TCPSite(runner, host, port)
        await site.start()

        logger.info(f"Tracking server started on {host}:{port}")
        logger.info(f"Rate limiting: {self.rate_limiter.max_requests} requests per {self.rate_limiter.time_window} seconds")

        return runner


async def start_tracking_server(session_factory=None):
    """Start the tracking server for main.py"""
    server = TrackingServer(session_factory)
    return await server.start()
