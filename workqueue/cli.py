"""
Command line interface for the work queue repository.

Example:
    workqueue --rabbitmq-host localhost push jobs '{"type": "ping"}'
    workqueue listen-queue --queue jobs
"""

import json
import logging
from contextlib import contextmanager
from typing import Annotated, Optional

import typer

from workqueue.config import RabbitMQConfig, WorkQueueConfig
from workqueue.exceptions import WorkQueueError
from workqueue.log_setup import setup_logging
from workqueue.repository import WorkQueueRepository
from workqueue.serializer import Message
from workqueue.subscriber import Subscription

app = typer.Typer(help="Broadcast and work queue messaging over RabbitMQ.")
logger = logging.getLogger(__name__)

RabbitMQHost = Annotated[str, typer.Option(envvar="RABBITMQ_HOST")]
RabbitMQPort = Annotated[int, typer.Option(envvar="RABBITMQ_PORT")]
RabbitMQUser = Annotated[str, typer.Option(envvar="RABBITMQ_USER")]
RabbitMQPassword = Annotated[str, typer.Option(envvar="RABBITMQ_PASSWORD")]
RabbitMQVHost = Annotated[str, typer.Option(envvar="RABBITMQ_VHOST")]
RabbitMQEnableSSL = Annotated[bool, typer.Option(envvar="RABBITMQ_ENABLE_SSL")]
RabbitMQSSLHostname = Annotated[
    Optional[str], typer.Option(envvar="RABBITMQ_SSL_HOSTNAME")
]


def _parse_message(raw: str) -> Message:
    try:
        message = json.loads(raw)
    except ValueError as e:
        raise typer.BadParameter(f"not valid JSON: {e}")
    if not isinstance(message, dict):
        raise typer.BadParameter("message must be a JSON object")
    return message


def _parse_log_level(value: str) -> int:
    level = logging.getLevelName(value.upper())
    if not isinstance(level, int):
        raise typer.BadParameter(
            f"unknown log level {value!r}", param_hint="--log-level"
        )
    return level


@contextmanager
def _exit_on_error():
    try:
        yield
    except WorkQueueError as e:
        logger.error("%s: %s", e, e.__cause__)
        raise typer.Exit(code=1)


def _open_repository(ctx: typer.Context) -> WorkQueueRepository:
    with _exit_on_error():
        return WorkQueueRepository(ctx.obj["config"])


def _subscribe(repo: WorkQueueRepository, subscribe, *args, **kwargs) -> Subscription:
    try:
        with _exit_on_error():
            return subscribe(*args, **kwargs)
    except typer.Exit:
        repo.shutdown()
        raise


def _print_message(message: Message) -> None:
    typer.echo(json.dumps(message))


def _wait(repo: WorkQueueRepository, subscription: Subscription) -> None:
    try:
        while subscription.is_alive():
            subscription.join(1.0)
    except KeyboardInterrupt:
        logger.info("Interrupted, shutting down")
        repo.shutdown()
        return
    repo.shutdown()
    if subscription.error is not None:
        raise typer.Exit(code=1)


@app.callback()
def callback(
    ctx: typer.Context,
    rabbitmq_host: RabbitMQHost = "localhost",
    rabbitmq_port: RabbitMQPort = 5672,
    rabbitmq_user: RabbitMQUser = "guest",
    rabbitmq_password: RabbitMQPassword = "guest",
    rabbitmq_vhost: RabbitMQVHost = "/",
    rabbitmq_enable_ssl: RabbitMQEnableSSL = False,
    rabbitmq_ssl_hostname: RabbitMQSSLHostname = None,
    broadcast_exchange: Annotated[
        str, typer.Option(envvar="WORKQUEUE_BROADCAST_EXCHANGE")
    ] = "exBroadcast",
    graph_property_queue: Annotated[
        str, typer.Option(envvar="WORKQUEUE_GRAPH_PROPERTY_QUEUE")
    ] = "graphProperty",
    log_level: Annotated[str, typer.Option(envvar="LOG_LEVEL")] = "INFO",
):
    setup_logging(level=_parse_log_level(log_level))
    ctx.obj = {
        "config": WorkQueueConfig(
            rabbitmq=RabbitMQConfig(
                host=rabbitmq_host,
                port=rabbitmq_port,
                username=rabbitmq_user,
                password=rabbitmq_password,
                virtual_host=rabbitmq_vhost,
                ssl_enabled=rabbitmq_enable_ssl,
                ssl_hostname=rabbitmq_ssl_hostname,
            ),
            broadcast_exchange=broadcast_exchange,
            graph_property_queue=graph_property_queue,
        )
    }


@app.command()
def broadcast(ctx: typer.Context, message: str):
    """Send a JSON message to every broadcast listener."""
    payload = _parse_message(message)
    with _open_repository(ctx) as repo, _exit_on_error():
        repo.broadcast(payload)


@app.command()
def push(ctx: typer.Context, queue: str, message: str):
    """Push a JSON message on a durable work queue."""
    payload = _parse_message(message)
    with _open_repository(ctx) as repo, _exit_on_error():
        repo.push(queue, payload)


@app.command()
def listen_broadcast(
    ctx: typer.Context,
    name: Annotated[str, typer.Option(help="Subscriber name")] = "cli",
):
    """Print every broadcast message until interrupted."""
    repo = _open_repository(ctx)
    _wait(repo, _subscribe(repo, repo.subscribe_to_broadcast, _print_message, name=name))


@app.command()
def listen_queue(
    ctx: typer.Context,
    queue: Annotated[
        Optional[str], typer.Option(help="Queue to consume (default: graph property queue)")
    ] = None,
    name: Annotated[str, typer.Option(help="Subscriber name")] = "cli",
):
    """Print and acknowledge messages from a work queue until interrupted."""
    repo = _open_repository(ctx)
    subscription = _subscribe(
        repo, repo.subscribe_to_work_queue, _print_message, queue_name=queue, name=name
    )
    _wait(repo, subscription)


@app.command()
def delete_queue(ctx: typer.Context):
    """Delete the graph property queue."""
    with _open_repository(ctx) as repo, _exit_on_error():
        repo.delete_queue()


def main():
    app()


if __name__ == "__main__":
    main()
