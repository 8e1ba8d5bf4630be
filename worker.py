import argparse

from rq import Worker

from logger import get_logger
from services.queue import default_queue_names, get_redis


log = get_logger("worker")


def parse_args():
    parser = argparse.ArgumentParser(description="RQ worker for migration jobs")
    parser.add_argument(
        "--queues",
        help="Comma separated list of queue names to listen on",
        default=""
    )
    parser.add_argument(
        "--name",
        help="Optional worker name override",
        default=""
    )
    return parser.parse_args()


def main():
    args = parse_args()
    queues = [q.strip() for q in args.queues.split(",") if q.strip()]
    if not queues:
        queues = default_queue_names()
    log.info("Worker escuchando colas: %s", ", ".join(queues))
    worker = Worker(queues, connection=get_redis(), name=args.name or None)
    worker.work()


if __name__ == "__main__":
    main()
