"""
Command Line Interface for clusterward
"""
import functools
import json
import sys
from pathlib import Path
import click
from clusterward.core.allocator import PortAllocator
from clusterward.core.config import DeploymentConfig
from clusterward.core.errors import ClusterwardError, PartialCommitError
from clusterward.core.models import NodeIdentity, NodeKind
from clusterward.engine.lifecycle import ProcessManager
from clusterward.engine.reconfigure import ReconfigurationEngine, ReconfigurationResult
from clusterward.render.renderer import json_schema
from clusterward.utils.logger import setup_logging


def reports_errors(command):
    """Turn clusterward errors into a one-line message and exit status 1"""
    @functools.wraps(command)
    def wrapper(*args, **kwargs):
        try:
            return command(*args, **kwargs)
        except PartialCommitError as e:
            click.secho(f"Error: {e}", fg='red', err=True)
            click.echo("The ensemble and the persisted topology may disagree. "
                       "Run 'clusterward reconcile --apply' instead of retrying.", err=True)
            sys.exit(1)
        except ClusterwardError as e:
            click.secho(f"Error: {e}", fg='red', err=True)
            sys.exit(1)
    return wrapper


@click.group()
@click.option('--path', '-p', type=click.Path(file_okay=False, path_type=Path),
              help='Root path of all configuration')
@click.option('--cluster-name', help='Name of the cluster')
@click.option('--config', '-c', 'config_file', help='Configuration file path')
@click.option('--verbose', '-v', is_flag=True, help='Enable verbose logging')
@click.option('--log-file', type=click.Path(dir_okay=False), help='Also write logs to this file')
@click.pass_context
def cli(ctx, path, cluster_name, config_file, verbose, log_file):
    """Manage Keeper/ClickHouse cluster topologies"""
    config = DeploymentConfig.load_from_file(config_file) if config_file else DeploymentConfig.from_env()

    overrides = {}
    if path is not None:
        overrides['path'] = path
    if cluster_name:
        overrides['cluster_name'] = cluster_name
    if overrides:
        config = DeploymentConfig(**{**config.model_dump(), **overrides})

    setup_logging('DEBUG' if verbose else config.log_level, log_file)

    ctx.ensure_object(dict)
    ctx.obj['config'] = config


def _engine(ctx) -> ReconfigurationEngine:
    config = ctx.obj['config']
    return ReconfigurationEngine(config, lifecycle=_process_manager(ctx))


def _process_manager(ctx) -> ProcessManager:
    config = ctx.obj['config']
    allocator = PortAllocator(config.deployment_dir, config.base_ports, config.host)
    return ProcessManager(allocator, config.clickhouse_binary)


def _echo_result(result: ReconfigurationResult):
    click.echo(f"{result.change}: committed topology version {result.topology.version}")
    if result.node is not None:
        click.echo(f"  Node: {result.node}")
    click.echo(f"  Configs written: {len(result.written)}")
    if result.lifecycle_error:
        click.secho(f"  Warning: {result.lifecycle_error}", fg='yellow')


@cli.command()
@click.option('--num-keepers', required=True, type=int, help='Number of coordination (keeper) nodes')
@click.option('--num-replicas', required=True, type=int, help='Number of data-store (server) nodes')
@click.pass_context
@reports_errors
def gen_config(ctx, num_keepers, num_replicas):
    """Generate configuration for the keeper ensemble and servers"""
    result = _engine(ctx).generate(num_keepers, num_replicas)
    _echo_result(result)
    click.echo(f"Deployment: {ctx.obj['config'].deployment_dir}")


@cli.command()
@click.pass_context
@reports_errors
def show(ctx):
    """Show the committed topology"""
    engine = _engine(ctx)
    topology = engine.current_topology()

    click.echo(f"Cluster: {topology.cluster_name}")
    click.echo(f"Version: {topology.version}")
    for kind in NodeKind:
        click.echo(f"\n{kind.value.capitalize()} nodes ({len(topology.members(kind))}):")
        for identity in topology.identities(kind):
            address = engine.allocator.ports_for(kind, identity.id)
            line = f"  {identity.id}: client {address.client_address}"
            if address.raft_port is not None:
                line += f", raft {address.raft_address}"
            if address.http_port is not None:
                line += f", http {address.http_port}, interserver {address.replication_port}"
            click.echo(line)
        tombstones = sorted(topology.tombstones(kind))
        if tombstones:
            click.echo(f"  Retired ids: {', '.join(str(i) for i in tombstones)}")


@cli.command()
@click.argument('kind', type=click.Choice([kind.value for kind in NodeKind]))
@click.argument('node_id', type=int)
@click.pass_context
@reports_errors
def render(ctx, kind, node_id):
    """Print the config a node would get from the committed topology"""
    engine = _engine(ctx)
    rendered = engine.renderer.render(engine.current_topology(), NodeIdentity(NodeKind(kind), node_id))
    click.echo(rendered.to_bytes().decode('utf-8'), nl=False)


@cli.command()
def schema():
    """Print the JSON schema of node config documents"""
    click.echo(json.dumps(json_schema(), indent=2, sort_keys=True))


@cli.command()
@click.pass_context
@reports_errors
def deploy(ctx):
    """Launch every node of the deployment"""
    topology = _engine(ctx).current_topology()
    _process_manager(ctx).deploy(topology)
    click.echo(f"Started {len(topology.identities())} nodes")


@cli.command()
@click.pass_context
@reports_errors
def teardown(ctx):
    """Stop every node of the deployment"""
    topology = _engine(ctx).current_topology()
    _process_manager(ctx).teardown(topology)
    click.echo("Stopped all nodes")


@cli.command()
@click.pass_context
@reports_errors
def status(ctx):
    """Show which nodes are running"""
    topology = _engine(ctx).current_topology()
    for name, running in _process_manager(ctx).status(topology).items():
        click.echo(f"  {'running' if running else 'stopped'}  {name}")


@cli.command()
@click.option('--no-start', is_flag=True, help='Do not start the new node')
@click.pass_context
@reports_errors
def add_keeper(ctx, no_start):
    """Add a node to the keeper ensemble"""
    _echo_result(_engine(ctx).add_coordination_node(start=not no_start))


@cli.command()
@click.argument('node_id', type=int)
@click.option('--stop', is_flag=True, help='Stop the removed node (its files are kept)')
@click.pass_context
@reports_errors
def remove_keeper(ctx, node_id, stop):
    """Remove a node from the keeper ensemble"""
    _echo_result(_engine(ctx).remove_coordination_node(node_id, stop=stop))


@cli.command()
@click.option('--no-start', is_flag=True, help='Do not start the new node')
@click.pass_context
@reports_errors
def add_server(ctx, no_start):
    """Add a data-store server"""
    _echo_result(_engine(ctx).add_datastore_node(start=not no_start))


@cli.command()
@click.argument('node_id', type=int)
@click.option('--stop', is_flag=True, help='Stop the removed node (its files are kept)')
@click.pass_context
@reports_errors
def remove_server(ctx, node_id, stop):
    """Remove a data-store server"""
    _echo_result(_engine(ctx).remove_datastore_node(node_id, stop=stop))


@cli.command()
@click.option('--apply', is_flag=True, help='Adopt the ensemble membership as a new topology version')
@click.pass_context
@reports_errors
def reconcile(ctx, apply):
    """Compare the persisted topology with the live ensemble"""
    report = _engine(ctx).reconcile(apply=apply)

    click.echo(f"Persisted version: {report.persisted_version}")
    click.echo(f"Ensemble: {', '.join(f'{i}={a}' for i, a in sorted(report.ensemble.items()))}")
    for member_id, (expected, actual) in sorted(report.address_mismatches.items()):
        click.secho(f"  Server {member_id} reports {actual}, expected {expected}", fg='yellow')
    if report.in_sync:
        click.echo("In sync")
        return
    click.echo(f"Missing from ensemble: {report.missing_from_ensemble}")
    click.echo(f"Unknown to topology: {report.unknown_to_topology}")
    if report.applied is not None:
        _echo_result(report.applied)


@cli.command()
@click.option('--output', '-o', default='clusterward.json', help='Output configuration file')
@click.pass_context
def init_config(ctx, output):
    """Initialize a configuration file with the current settings"""
    ctx.obj['config'].save_to_file(output)
    click.echo(f"Configuration file created: {output}")
    click.echo("Edit the file to customize settings, then use:")
    click.echo(f"  clusterward --config {output} gen-config --num-keepers 3 --num-replicas 2")


def main():
    """Main entry point"""
    cli()


if __name__ == '__main__':
    main()
