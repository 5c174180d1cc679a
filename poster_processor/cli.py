"""
Command line entry point for the Poster Processor.

Usage:
    poster-processor extract --image path/to/poster.jpg --output results/
    poster-processor extract --batch path/to/images/ --output results/
    poster-processor publish --image path/to/poster.jpg --event results/poster_event.json
    poster-processor check-duplicate poster.jpg
    poster-processor verify-setup
    poster-processor models
"""

import argparse
import asyncio
import logging
import sys
from pathlib import Path
from typing import List, Optional

from pydantic import ValidationError

from .config import Settings
from .data_models import EventDetails, VerificationStatus
from .normalizer import fields_needing_review
from .processor import PosterProcessor, load_event
from .vision_clients import ProviderError


IMAGE_EXTENSIONS = {'.jpg', '.jpeg', '.png', '.gif', '.webp', '.bmp', '.tiff'}


def setup_logging(verbose: bool = False) -> None:
    """Setup logging configuration."""
    level = logging.DEBUG if verbose else logging.INFO

    logging.basicConfig(
        level=level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=[
            logging.StreamHandler(sys.stdout),
            logging.FileHandler('poster_processor.log', encoding='utf-8')
        ]
    )


def get_image_files(path: str) -> List[str]:
    """
    Get list of image files from path.

    Args:
        path: File path or directory path

    Returns:
        List of image file paths
    """
    path_obj = Path(path)

    if path_obj.is_file():
        if path_obj.suffix.lower() in IMAGE_EXTENSIONS:
            return [str(path_obj)]
        raise ValueError(f"Unsupported image format: {path_obj.suffix}")

    if path_obj.is_dir():
        return sorted(str(f) for f in path_obj.iterdir()
                      if f.is_file() and f.suffix.lower() in IMAGE_EXTENSIONS)

    raise FileNotFoundError(f"Path not found: {path}")


def print_event(event: EventDetails) -> None:
    print(f"📌 Title: {event.title}")
    print(f"📍 Location: {event.location}")
    print(f"📅 Start: {event.start_date.astimezone().strftime('%d-%m-%Y %H:%M')}")
    print(f"⏱️  End: {event.end_date.astimezone().strftime('%d-%m-%Y %H:%M')}")
    print(f"🗓️  Calendar: {event.calendar.value}")
    review = fields_needing_review(event)
    if review:
        print(f"✏️  Please review: {', '.join(review)}")


async def run_extract(processor: PosterProcessor, args) -> int:
    image_paths = get_image_files(args.image or args.batch)
    if not image_paths:
        raise ValueError(f"No image files found in: {args.batch}")

    candidates = args.models.split(',') if args.models else None

    if len(image_paths) == 1:
        print(f"\nAnalyzing: {Path(image_paths[0]).name}")
        print("-" * 50)
        events = {image_paths[0]: await processor.analyze_poster(image_paths[0], candidates)}
    else:
        print(f"\n🚀 Starting batch analysis of {len(image_paths)} posters")
        events = await processor.analyze_multiple_posters(image_paths, args.max_concurrent, candidates)
        print(f"✅ Analyzed: {len(events)}/{len(image_paths)}")

    for image_path, event in events.items():
        print()
        print_event(event)
        if args.output:
            json_file = Path(args.output) / f"{Path(image_path).stem}_event.json"
            processor.export_results(event, str(json_file), 'json')
            print(f"💾 Saved to: {json_file}")

    return 0


async def run_publish(processor: PosterProcessor, args) -> int:
    event = load_event(args.event)
    filename = Path(args.image).name

    if not args.skip_duplicate_check:
        duplicate = await processor.check_duplicate(filename)
        if duplicate.is_duplicate:
            print(f"⚠️  {duplicate.message}: {', '.join(duplicate.matches)}")
            print("Use --skip-duplicate-check to publish anyway")
            return 2

    result = await processor.publish(event, args.image)
    for name, sink_result in (('Drive', result.drive), ('Calendar', result.calendar),
                              ('Photos', result.photos)):
        mark = '✅' if sink_result.success else '❌'
        print(f"{mark} {name}: {sink_result.message}" + (f" ({sink_result.url})" if sink_result.url else ''))

    return 0 if result.all_succeeded else 1


async def run_check_duplicate(processor: PosterProcessor, args) -> int:
    duplicate = await processor.check_duplicate(args.filename)
    print(duplicate.message)
    for match in duplicate.matches:
        print(f"  - {match}")
    return 2 if duplicate.is_duplicate else 0


async def run_verify_setup(processor: PosterProcessor, args) -> int:
    marks = {VerificationStatus.SUCCESS: '✅', VerificationStatus.WARNING: '⚠️ ',
             VerificationStatus.ERROR: '❌'}
    results = await processor.verify_setup()
    for result in results:
        print(f"{marks[result.status]} {result.service}: {result.message}")
        if result.details:
            print(f"     {result.details}")
    return 1 if any(r.status == VerificationStatus.ERROR for r in results) else 0


async def run_models(processor: PosterProcessor, args) -> int:
    for model in await processor.list_models():
        print(f"{model['id']}  {model['name']}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='poster-processor',
        description="Poster Processor - extract events from posters and publish them to Google services",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__.split('Usage:')[1],
    )
    parser.add_argument('--verbose', '-v', action='store_true', help='Enable verbose logging')
    subparsers = parser.add_subparsers(dest='command', required=True)

    extract = subparsers.add_parser('extract', help='Extract event details from poster images')
    input_group = extract.add_mutually_exclusive_group(required=True)
    input_group.add_argument('--image', type=str, help='Single poster image to analyze')
    input_group.add_argument('--batch', type=str, help='Directory containing poster images')
    extract.add_argument('--output', type=str, help='Output directory for event JSON files')
    extract.add_argument('--models', type=str,
                         help='Comma separated model ids to try, in order (overrides configuration)')
    extract.add_argument('--permissive', action='store_true',
                         help='Build a record from plain text answers without JSON')
    extract.add_argument('--max-concurrent', type=int, default=3,
                         help='Maximum concurrent analyses for batch processing')
    extract.set_defaults(handler=run_extract)

    publish = subparsers.add_parser('publish', help='Publish a reviewed event to Drive, Calendar and Photos')
    publish.add_argument('--image', type=str, required=True, help='Poster image')
    publish.add_argument('--event', type=str, required=True, help='Reviewed event JSON file')
    publish.add_argument('--skip-duplicate-check', action='store_true',
                         help='Publish even when the poster was uploaded before')
    publish.set_defaults(handler=run_publish)

    duplicate = subparsers.add_parser('check-duplicate', help='Check whether a poster was uploaded before')
    duplicate.add_argument('filename', type=str, help='Poster file name')
    duplicate.set_defaults(handler=run_check_duplicate)

    verify = subparsers.add_parser('verify-setup', help='Check configuration and service access')
    verify.set_defaults(handler=run_verify_setup)

    models = subparsers.add_parser('models', help='List vision models available on OpenRouter')
    models.set_defaults(handler=run_models)

    return parser


async def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point."""
    args = build_parser().parse_args(argv)

    setup_logging(args.verbose)
    logger = logging.getLogger(__name__)

    try:
        overrides = {'permissive_parsing': True} if getattr(args, 'permissive', False) else {}
        settings = Settings(**overrides)

        async with PosterProcessor(settings) as processor:
            return await args.handler(processor, args)

    except (ValueError, ValidationError, OSError, ProviderError) as e:
        logger.error(f"Error: {e}")
        print(f"❌ Error: {e}")
        return 1


def run() -> None:
    try:
        sys.exit(asyncio.run(main()))
    except KeyboardInterrupt:
        print("\n⏹️  Interrupted by user")
        sys.exit(1)


if __name__ == "__main__":
    run()
