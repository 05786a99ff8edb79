import argparse
import logging
import sys
import uuid

from pydantic import ValidationError

from . import config as config_lib
from .app import WorkerApp, check_dependency
from .converters import ConverterRegistry
from .errors import JobNotFoundError, QueueError, RepositoryError, StartupError
from .ffmpeg_runner import FfmpegRunner
from .queue import Job, QueueClass, RedisQueue, SQLiteJobRepository, create_repository

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(threadName)s %(name)s: %(message)s"


def setup_logging(level: str) -> None:
    logging.basicConfig(level=getattr(logging, level.upper(), logging.INFO), format=LOG_FORMAT)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="conversion-worker", description="Media conversion queue worker"
    )
    parser.add_argument("--config", "-c", type=str, help="YAML config file (default: config/local.yaml)")
    parser.add_argument("--database-url", type=str, help="Job store URL (postgresql://... or sqlite:///...)")
    parser.add_argument(
        "--log-level", choices=["debug", "info", "warning", "error"], help="Override log level"
    )
    subparsers = parser.add_subparsers(dest="command", help="Subcommands")

    # RUN
    run_parser = subparsers.add_parser("run", help="Start the worker pool")
    run_parser.add_argument("--light", type=int, help="Number of light workers")
    run_parser.add_argument("--heavy", type=int, help="Number of heavy workers")
    run_parser.add_argument("--only", choices=["light", "heavy"], help="Start only one queue class")
    run_parser.add_argument("--output-dir", "-o", type=str, help="Directory for converted files")

    # CHECK
    subparsers.add_parser("check", help="Verify ffmpeg, Redis and the job store")

    # FORMATS
    subparsers.add_parser("formats", help="List supported media kinds and formats")

    # ENQUEUE (producer helper)
    enqueue_parser = subparsers.add_parser("enqueue", help="Push a job onto a queue")
    enqueue_parser.add_argument("--input", "-i", type=str, required=True, help="Input file path")
    enqueue_parser.add_argument("--mimetype", "-m", type=str, required=True, help="Media type, e.g. video/mp4")
    enqueue_parser.add_argument("--format", "-f", type=str, required=True, help="Target format token")
    enqueue_parser.add_argument("--queue", "-q", choices=["light", "heavy"], default="light", help="Queue class")
    enqueue_parser.add_argument("--id", type=str, help="Job id (default: random UUID)")
    enqueue_parser.add_argument(
        "--register", action="store_true", help="Also insert the pending row (SQLite job store only)"
    )

    # STATUS
    status_parser = subparsers.add_parser("status", help="Show a job's persisted status")
    status_parser.add_argument("job_id", type=str, help="Job id")

    return parser


def main():
    parser = build_parser()
    args = parser.parse_args()

    if args.command is None:
        parser.print_help()
        return

    cli_dict = {k: v for k, v in vars(args).items() if v is not None}
    try:
        config = config_lib.resolve_config(cli_dict, config_path=args.config)
    except ValidationError as e:
        print(f"❌ Invalid configuration:\n{e}")
        sys.exit(1)

    setup_logging(config.app.log_level)

    if args.command == "run":
        app = WorkerApp(config)
        try:
            app.initialize()
        except StartupError as e:
            logging.getLogger(__name__).error("Failed to initialize services: %s", e)
            app.cleanup()
            sys.exit(1)
        app.run()

    elif args.command == "check":
        sys.exit(0 if run_checks(config) else 1)

    elif args.command == "formats":
        registry = ConverterRegistry()
        print("\n" + "=" * 60)
        print("SUPPORTED FORMATS")
        print("=" * 60)
        for kind, formats in registry.describe().items():
            print(f"{kind + ':':<10}{', '.join(formats)}")
        print("=" * 60)

    elif args.command == "enqueue":
        enqueue(config, args)

    elif args.command == "status":
        show_status(config, args.job_id)


def run_checks(config) -> bool:
    """Print one line per dependency; True if all are reachable."""
    print("Checking dependencies...")
    ok = True

    runner = FfmpegRunner(ffmpeg_path=config.conversion.ffmpeg_path)
    if runner.check():
        print("✅ ffmpeg found.")
    else:
        print("❌ ffmpeg NOT found.")
        ok = False

    timeout = config.app.startup_timeout_s
    queue = RedisQueue.from_config(config.redis)
    try:
        check_dependency("redis", queue.ping, timeout)
        print("✅ Redis reachable.")
    except StartupError as e:
        print(f"❌ {e}")
        ok = False
    finally:
        queue.close()

    try:
        repository = create_repository(config.database)
    except Exception as e:
        print(f"❌ Job store misconfigured: {e}")
        return False
    try:
        check_dependency("database", repository.ping, timeout)
        print("✅ Job store reachable.")
    except StartupError as e:
        print(f"❌ {e}")
        ok = False
    finally:
        repository.close()

    return ok


def enqueue(config, args) -> None:
    job = Job(
        job_id=args.id or str(uuid.uuid4()),
        input_path=args.input,
        media_type=args.mimetype,
        format=args.format,
    )

    if args.register:
        repository = create_repository(config.database)
        try:
            if not isinstance(repository, SQLiteJobRepository):
                print("❌ --register is only supported with a sqlite:/// job store")
                sys.exit(1)
            repository.create_job(job)
        finally:
            repository.close()

    queue = RedisQueue.from_config(config.redis)
    try:
        queue.push_job(QueueClass(args.queue), job)
    except QueueError as e:
        print(f"❌ {e}")
        sys.exit(1)
    finally:
        queue.close()

    print(f"Enqueued job {job.job_id} on {args.queue} queue")


def show_status(config, job_id: str) -> None:
    repository = create_repository(config.database)
    try:
        job = repository.get_job(job_id)
    except JobNotFoundError:
        print(f"❌ Job {job_id} not found")
        sys.exit(1)
    except RepositoryError as e:
        print(f"❌ {e}")
        sys.exit(1)
    finally:
        repository.close()

    print("\n" + "=" * 60)
    print(f"JOB {job.job_id}")
    print("=" * 60)
    print(f"Status:               {job.status.value}")
    print(f"Input:                {job.input_path}")
    print(f"Media type:           {job.media_type}")
    print(f"Format:               {job.format}")
    if job.output_path:
        print(f"Output:               {job.output_path}")
    print("=" * 60)


if __name__ == "__main__":
    main()
