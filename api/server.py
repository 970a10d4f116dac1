from contextlib import asynccontextmanager
from typing import List, Dict, Any, Optional
from fastapi import FastAPI, HTTPException, Query, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel
from models import (RecommendationRequest, RecommendationResponse, RecommendationReason, UserBehavior, HomeFeed,
                    HomeFeedSection, ABTestResult, ABEventType)
from recommendation_engine import RecommendationEngine, build_recommendation_engine
from utils.logger import logger
from config import config


class ABEventRequest(BaseModel):
    user_id: str
    event_type: ABEventType
    metadata: Dict[str, Any] = {}


def create_app(engine: Optional[RecommendationEngine] = None) -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if getattr(app.state, 'engine', None) is None:
            logger.info("Building recommendation engine")
            app.state.engine = build_recommendation_engine()
        yield

    app = FastAPI(
        title="Music Recommendations",
        description="Personalized track recommendations and home feed",
        version="1.0.0",
        lifespan=lifespan
    )
    app.state.engine = engine

    app.add_middleware(
        CORSMiddleware,
        allow_origins=[origin.strip() for origin in config.api.cors_origins.split(",")],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    def get_engine(request: Request) -> RecommendationEngine:
        return request.app.state.engine

    @app.get("/health")
    async def health(request: Request):
        engine = get_engine(request)
        return {
            "status": "healthy",
            "tracks": len(engine.catalog),
            "cache_backend": engine.cache.backend,
        }

    @app.post("/recommendations", response_model=RecommendationResponse)
    async def recommendations(body: RecommendationRequest, request: Request):
        return await get_engine(request).generate_recommendations(body)

    @app.get("/home-feed/{user_id}", response_model=HomeFeed)
    async def home_feed(user_id: str, request: Request, refresh: bool = Query(False, description="Bypass cached sections")):
        return await get_engine(request).get_home_feed(user_id, refresh)

    @app.post("/home-feed/{user_id}/sections/{section_type}/refresh", response_model=HomeFeedSection)
    async def refresh_section(user_id: str, section_type: str, request: Request):
        try:
            return await get_engine(request).refresh_home_feed_section(user_id, section_type)
        except ValueError:
            raise HTTPException(status_code=404, detail=f"Unknown section type {section_type}")

    @app.post("/behavior", status_code=204)
    async def behavior(body: UserBehavior, request: Request):
        await get_engine(request).update_user_behavior(body)
        return Response(status_code=204)

    @app.get("/explain/{track_id}", response_model=List[RecommendationReason])
    async def explain(track_id: str, request: Request, user_id: str = Query(..., description="User to explain for")):
        return await get_engine(request).get_recommendation_explanation(track_id, user_id)

    @app.get("/metrics")
    async def engine_metrics(request: Request):
        return get_engine(request).get_metrics()

    @app.get("/ab-tests")
    async def ab_tests(request: Request):
        manager = get_engine(request).ab_testing
        return {name: [v.model_dump(mode='json') for v in variants] for name, variants in manager.tests.items()}

    @app.post("/ab-tests/{test_name}/events")
    async def ab_event(test_name: str, body: ABEventRequest, request: Request):
        manager = get_engine(request).ab_testing
        if test_name not in manager.tests:
            raise HTTPException(status_code=404, detail=f"Unknown test {test_name}")
        recorded = manager.track_event(body.user_id, test_name, body.event_type.value, body.metadata)
        return {"recorded": recorded}

    @app.post("/ab-tests/{test_name}/end", response_model=ABTestResult)
    async def end_ab_test(test_name: str, request: Request):
        result = get_engine(request).ab_testing.end_test(test_name)
        if result is None:
            raise HTTPException(status_code=404, detail=f"Unknown test {test_name}")
        return result

    return app


app = create_app()
