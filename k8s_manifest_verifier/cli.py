
import json
import logging
import sys

import click

from .errors import VerificationError
from .kubeutil import KubeDryRun
from .mapnode import load_documents
from .option import VerifyResourceOption, load_verify_option
from .verifier import verify_resource

EXIT_VERIFIED = 0
EXIT_NOT_VERIFIED = 1
EXIT_ERROR = 2


@click.group()
@click.option('--debug', is_flag=True, help='Enable debug logging')
def cli(debug):
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.WARNING,
        format='%(asctime)s %(levelname)s %(name)s: %(message)s',
    )


@cli.command('verify-resource')
@click.argument('path', required=False, type=click.Path(exists=True, dir_okay=False))
@click.option('--api-version', default='v1', show_default=True, help='apiVersion of the live resource')
@click.option('--kind', help='Kind of the live resource to read from the cluster')
@click.option('--name', help='Name of the live resource')
@click.option('-n', '--namespace', default='', help='Namespace of the live resource')
@click.option('-i', '--image', 'image_ref', default='', help='Signed manifest image reference')
@click.option('-k', '--key', 'key_path', default='', type=click.Path(), help='Public key for signature verification')
@click.option('-c', '--config', 'config_path', type=click.Path(exists=True), help='Verify option YAML file')
@click.option('--dry-run-for-apply', is_flag=True, help='Also try a dry-run apply match')
@click.option('--kubeconfig', type=click.Path(), help='Path to kubeconfig')
@click.option('--context', 'kube_context', help='Kubeconfig context')
def verify_resource_cmd(path, api_version, kind, name, namespace, image_ref, key_path, config_path,
                        dry_run_for_apply, kubeconfig, kube_context):
    """Verify a resource (file PATH or --kind/--name from the cluster) and print JSON result."""
    option = load_verify_option(config_path) if config_path else VerifyResourceOption()
    option = option.with_overrides(image_ref=image_ref, key_path=key_path,
                                   check_dryrun_for_apply=dry_run_for_apply)
    dryrun = KubeDryRun(kubeconfig=kubeconfig, context=kube_context)

    try:
        if path:
            with open(path, 'rb') as f:
                objs = load_documents(f.read())
        elif kind and name:
            objs = [dryrun.get_resource(api_version, kind, name, namespace)]
        else:
            raise click.UsageError('give a resource file or --kind and --name')
        results = [verify_resource(o, option, dryrun=dryrun) for o in objs]
    except (VerificationError, ValueError) as e:
        click.echo(f'error: {e}', err=True)
        sys.exit(EXIT_ERROR)

    out = [r.to_dict() for r in results]
    print(json.dumps(out[0] if len(out) == 1 else out, indent=2, ensure_ascii=False))
    sys.exit(EXIT_VERIFIED if results and all(r.verified for r in results) else EXIT_NOT_VERIFIED)


if __name__ == '__main__':
    cli()
