import argparse
import asyncio
import sys

from loguru import logger

from core.config import get_settings
from core.errors import OrchestratorError
from core.models import DeploymentRequest


def _configure_logging(level: str) -> None:
    logger.remove()
    logger.add(sys.stderr, level=level)


def _parse_env(pairs):
    env = {}
    for pair in pairs or []:
        key, sep, value = pair.partition("=")
        if not sep or not key:
            raise argparse.ArgumentTypeError(f"Expected KEY=VALUE, got {pair!r}")
        env[key] = value
    return env


def _deploy(args) -> int:
    from api.deps import get_services

    services = get_services()
    request = DeploymentRequest(
        repository=args.repository,
        name=args.name,
        branch=args.branch,
        environment=_parse_env(args.env),
    )

    logger.info(f"Starting deployment for {request.name}")
    try:
        deployment = asyncio.run(services.orchestrator.deploy(request))
    except OrchestratorError as e:
        logger.critical(f"Deployment Failed: [{e.kind}] {e}")
        return 1

    logger.success(f"Deployed {deployment.name} successfully!")
    logger.success(f"Container ID: {deployment.workload_id[:12]}")
    if deployment.port_mappings:
        logger.success(
            f"Access it at: http://localhost:{deployment.port_mappings[0].host_port}"
        )
    return 0


def _serve(args) -> int:
    import uvicorn

    uvicorn.run("api.server:app", host=args.host, port=args.port)
    return 0


def main(argv=None) -> int:
    settings = get_settings()
    _configure_logging(settings.log_level)

    parser = argparse.ArgumentParser(prog="pypaas")
    sub = parser.add_subparsers(dest="command", required=True)

    serve = sub.add_parser("serve", help="run the webhook and operator API")
    serve.add_argument("--host", default="0.0.0.0")
    serve.add_argument("--port", type=int, default=8080)
    serve.set_defaults(func=_serve)

    deploy = sub.add_parser("deploy", help="deploy a repository once from source")
    deploy.add_argument("name")
    deploy.add_argument("repository")
    deploy.add_argument("--branch", default="main")
    deploy.add_argument("--env", action="append", metavar="KEY=VALUE")
    deploy.set_defaults(func=_deploy)

    args = parser.parse_args(argv)
    try:
        return args.func(args)
    except argparse.ArgumentTypeError as e:
        logger.error(str(e))
        return 2


if __name__ == "__main__":
    sys.exit(main())
