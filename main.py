import os
import json
import asyncio
import argparse
from typing import Optional
from models import RecommendationRequest, RecommendationResponse, HomeFeed
from recommendation_engine import RecommendationEngine, build_recommendation_engine
from data.catalog import MusicCatalog
from data.seeding import SyntheticDataSeeder
from utils.logger import logger
from config import config


class RecommendationSystemApp:
    def __init__(self, model_path: Optional[str] = None):
        self.model_path = model_path or config.seed.model_path
        self.engine: RecommendationEngine = self._initialize_system()

    def _initialize_system(self) -> RecommendationEngine:
        logger.info("Initializing recommendation system")
        seeder = SyntheticDataSeeder()
        data = seeder.generate()
        catalog_file = config.seed.catalog_path
        if os.path.exists(catalog_file):
            logger.info("Loading existing music catalog", path=catalog_file)
            data['catalog'] = MusicCatalog.load(catalog_file)
            data['track_features'] = seeder.generate_track_features(data['catalog'])
            data['artist_similarity'] = seeder.generate_artist_similarity(data['catalog'])
            data['behaviors'] = seeder.generate_behaviors(data['catalog'])
            data['popularity'], data['play_history'] = seeder.generate_popularity(data['catalog'])
        else:
            logger.info("Creating new music catalog", path=catalog_file)
            data['catalog'].save(catalog_file)

        engine = build_recommendation_engine(data)
        if os.path.exists(os.path.join(self.model_path, 'user_data.json')):
            engine.load_model(self.model_path)
        logger.info("System initialization completed")
        return engine

    def save_system(self):
        self.engine.save_model(self.model_path)
        print(f"Saved system to {self.model_path}")

    def print_recommendations(self, response: RecommendationResponse):
        print(f"\nAlgorithm: {response.algorithm}  ({len(response.tracks)} of {response.total_available})")
        if response.metadata.cold_start_strategy:
            print(f"Cold start strategy: {response.metadata.cold_start_strategy}")
        if response.metadata.ab_test_variant:
            print(f"A/B variant: {response.metadata.ab_test_variant}")
        if response.metadata.fallback:
            print("Served by the popularity fallback")
        for i, rec in enumerate(response.tracks, 1):
            track = self.engine.catalog.get_track(rec.track_id)
            title = f"{track.title} - {track.artist_name}" if track else rec.track_id
            print(f"{i:2d}. {title}  [{rec.score:.3f}]")
            if rec.reasons:
                print(f"    {rec.reasons[0].explanation}")

    def print_home_feed(self, feed: HomeFeed):
        print(f"\nHome feed for {feed.user_id}: {feed.metadata.total_sections} sections")
        print(f"Diversity {feed.metadata.diversity_score:.2f}  Freshness {feed.metadata.freshness_score:.2f}  "
              f"Confidence {feed.metadata.average_confidence:.2f}")
        for section in feed.sections:
            print(f"\n[{section.priority}] {section.title} ({section.algorithm})")
            for rec in section.tracks[:5]:
                track = self.engine.catalog.get_track(rec.track_id)
                print(f"    {track.title if track else rec.track_id}  [{rec.score:.3f}]")

    async def recommend(self, args):
        request = RecommendationRequest(
            user_id=args.user,
            section_type=args.section,
            limit=args.limit,
            algorithm=args.algorithm,
            diversity_level=args.diversity,
            freshness_level=args.freshness
        )
        self.print_recommendations(await self.engine.generate_recommendations(request))

    async def home_feed(self, args):
        self.print_home_feed(await self.engine.get_home_feed(args.user, refresh=args.refresh))

    async def explain(self, args):
        reasons = await self.engine.get_recommendation_explanation(args.track, args.user)
        if not reasons:
            print("No explanation available")
        for reason in reasons:
            print(f"- {reason.explanation} ({reason.type}, weight {reason.weight})")

    async def train(self, args):
        await self.engine.train_models()
        print(json.dumps(self.engine.get_metrics()['engine'], indent=2))


def main():
    parser = argparse.ArgumentParser(description='Music Recommendation System')
    parser.add_argument('--save', action='store_true', help='Save system after running')
    parser.add_argument('--model-path', default=None, help='Directory for persisted model state')
    subparsers = parser.add_subparsers(dest='command', required=True)

    recommend = subparsers.add_parser('recommend', help='Generate recommendations for a section')
    recommend.add_argument('--user', required=True, help='User id')
    recommend.add_argument('--section', default='daily_mix', help='Section type')
    recommend.add_argument('--limit', type=int, default=20, help='Number of tracks')
    recommend.add_argument('--algorithm', default=None,
                           choices=['collaborative_filtering', 'content_based', 'hybrid', 'popularity_based', 'time_contextual', 'mood_based'],
                           help='Explicit algorithm')
    recommend.add_argument('--diversity', choices=['low', 'medium', 'high'], default='medium', help='Diversity level')
    recommend.add_argument('--freshness', choices=['low', 'medium', 'high'], default='medium', help='Freshness level')

    feed = subparsers.add_parser('home-feed', help='Assemble the home feed for a user')
    feed.add_argument('--user', required=True, help='User id')
    feed.add_argument('--refresh', action='store_true', help='Bypass cached sections')

    explain = subparsers.add_parser('explain', help='Explain why a track suits a user')
    explain.add_argument('--user', required=True, help='User id')
    explain.add_argument('--track', required=True, help='Track id')

    subparsers.add_parser('train', help='Retrain models from the behavior log')

    serve = subparsers.add_parser('serve', help='Run the HTTP API')
    serve.add_argument('--host', default=config.api.host, help='Bind host')
    serve.add_argument('--port', type=int, default=config.api.port, help='Bind port')

    args = parser.parse_args()

    if args.command == 'serve':
        import uvicorn
        uvicorn.run("api.server:app", host=args.host, port=args.port)
        return

    app = RecommendationSystemApp(args.model_path)
    handlers = {
        'recommend': app.recommend,
        'home-feed': app.home_feed,
        'explain': app.explain,
        'train': app.train,
    }
    asyncio.run(handlers[args.command](args))
    if args.save:
        app.save_system()

if __name__ == "__main__":
    main()
