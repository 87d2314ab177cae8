#!/usr/bin/env python3
"""
Command-line entry point for the image uploader.

Runs the whole pipeline on one local file: load, transform, blurhash and
signed upload. The public URL and the blurhash are printed on stdout.
"""
import argparse
import asyncio
import sys

from image_uploader.config import settings
from image_uploader.exceptions import CancelledError, ImagePipelineError
from image_uploader.models.media import CropRegion, TransformParams
from image_uploader.services import ImageUploader, UploadService
from image_uploader.utils.logging_config import setup_logging, get_logger, LoggingContext


logger = get_logger(__name__)

EXIT_FAILURE = 1
EXIT_CANCELLED = 130


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Edit an image and upload it as WebP")
    parser.add_argument("image", help="Path of the image to upload")
    parser.add_argument(
        "--rotate",
        type=float,
        default=0.0,
        help="Rotation in degrees, clockwise (default: 0)",
    )
    parser.add_argument(
        "--zoom",
        type=float,
        default=1.0,
        help="Zoom factor, at least 1 (default: 1)",
    )
    parser.add_argument(
        "--flip-horizontal",
        action="store_true",
        default=False,
        help="Mirror the image left to right",
    )
    parser.add_argument(
        "--flip-vertical",
        action="store_true",
        default=False,
        help="Mirror the image top to bottom",
    )
    parser.add_argument(
        "--crop",
        type=int,
        nargs=4,
        metavar=("X", "Y", "W", "H"),
        help="Crop rectangle on the rotated image (default: centred crop for --zoom)",
    )
    parser.add_argument(
        "--name",
        type=str,
        default=None,
        help="Upload file name (default: input name with .webp extension)",
    )
    parser.add_argument(
        "--endpoint",
        type=str,
        default=None,
        help=f"Upload API endpoint (default: {settings.UPLOAD_API_ENDPOINT})",
    )
    return parser


async def run(args: argparse.Namespace) -> int:
    uploader = ImageUploader(upload_service=UploadService(endpoint=args.endpoint))

    async with uploader:
        try:
            params = TransformParams.normalized(
                rotation_degrees=args.rotate,
                zoom=args.zoom,
                flip_horizontal=args.flip_horizontal,
                flip_vertical=args.flip_vertical,
            )
            crop = CropRegion(*args.crop) if args.crop else None

            session = await uploader.open_file(args.image)
            with LoggingContext(logger, session_id=session.id):
                await session.preview(params, crop)
                outcome = await session.confirm(args.name)

        except CancelledError as e:
            logger.info(f"Cancelled: {str(e)}")
            return EXIT_CANCELLED
        except ImagePipelineError as e:
            logger.error(f"{e.user_message}: {str(e)}")
            print(f"error: {e.user_message}", file=sys.stderr)
            return EXIT_FAILURE

    print(outcome.url)
    print(outcome.blurhash or "")
    return 0


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)

    setup_logging(
        log_level="DEBUG" if settings.UPLOADER_DEBUG else settings.UPLOADER_LOG_LEVEL,
        log_to_file=settings.UPLOADER_LOG_TO_FILE,
        log_dir=settings.UPLOADER_LOG_DIR,
    )

    try:
        return asyncio.run(run(args))
    except KeyboardInterrupt:
        logger.info("Interrupted")
        return EXIT_CANCELLED


if __name__ == "__main__":
    sys.exit(main())
