# cli.py
import click
import logging

from files_agent.main import configure_logging, create_app
from files_agent.settings import get_settings

# Configure logging
logger = logging.getLogger(__name__)

@click.group()
def cli():
    """CLI commands for the Files Agent"""
    pass

@cli.command()
@click.option("--host", default="0.0.0.0", show_default=True, help="Interface to bind")
@click.option("--port", default=8000, show_default=True, type=int, help="Port to listen on")
def serve(host, port):
    """Run the Files Agent API with uvicorn"""
    import uvicorn

    settings = get_settings()
    configure_logging(settings.log_level)
    logger.info(f"Starting {settings.app_name} on {host}:{port}")
    uvicorn.run(create_app(settings), host=host, port=port)

@cli.command()
def show_config():
    """Show current configuration"""
    settings = get_settings()

    click.echo("Current Configuration:")
    click.echo(f"  App Name: {settings.app_name}")
    click.echo(f"  Agent ID: {settings.agent_id}")
    click.echo(f"  Mount Prefix: {settings.mount_prefix or '/'}")
    click.echo(f"  Storage Backend: {settings.storage_backend}")
    if settings.storage_backend == "local":
        click.echo(f"  Storage Dir: {settings.storage_dir}")
    elif settings.storage_backend == "s3":
        click.echo(f"  S3 Bucket: {settings.s3_bucket_name}")
        click.echo(f"  AWS Region: {settings.aws_region}")
        click.echo(f"  AWS Endpoint: {settings.aws_endpoint_url}")
    else:
        click.echo(f"  IPFS API: {settings.ipfs_url}")
        click.echo(f"  IPFS Gateway: {settings.ipfs_gateway}")
    click.echo(f"  Metadata Backend: {settings.metadata_backend}")
    if settings.metadata_backend == "sqlite":
        click.echo(f"  SQLite Path: {settings.sqlite_path}")
    else:
        click.echo(f"  Data Dir: {settings.data_dir}")
    click.echo(f"  Permission Mode: {settings.permission_mode}")
    click.echo(f"  Identity Provider: {settings.identity_url or 'not configured (read-only)'}")
    click.echo(f"  Trust Identity Header: {settings.trust_identity_header} ({settings.identity_header})")
    click.echo(f"  Max Upload: {settings.max_upload_bytes} bytes")

if __name__ == "__main__":
    cli()
