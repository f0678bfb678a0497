"""
Main CLI entry point for apm

Commands (with short aliases):
- apm install / apm i       install host packages (pkg+ / pkg- pin markers)
- apm remove / apm rm       remove host packages
- apm check-install, check-remove   simulate only
- apm update / apm up       rebuild the package cache
- apm info, list / l, search / s
- apm image status|apply|history
- apm distrobox / apm d     packages inside distrobox containers
"""

import argparse
import json
import sys

from .. import __version__
from ..core.database import PackageDatabase
from ..core.models import DryRunOutcome, ListParams, Operation, Response
from . import colors


class AliasedSubParsersAction(argparse._SubParsersAction):
    """Custom action to support command aliases in argparse."""

    def add_parser(self, name, **kwargs):
        aliases = kwargs.pop('aliases', [])
        parser = super().add_parser(name, **kwargs)

        # Register aliases
        for alias in aliases:
            self._name_parser_map[alias] = parser

        return parser


def _add_list_arguments(parser: argparse.ArgumentParser):
    parser.add_argument('--sort', default='', help='Sort field (e.g. name, version)')
    parser.add_argument('--order', default='', choices=['', 'asc', 'desc', 'ASC', 'DESC'],
                        help='Sort order')
    parser.add_argument('--limit', type=int, default=10, help='Max entries (0 = all)')
    parser.add_argument('--offset', type=int, default=0, help='Entries to skip')
    parser.add_argument('--filter-field', default='', help='Field to filter on')
    parser.add_argument('--filter-value', default='', help='Filter value')
    parser.add_argument('--force-update', action='store_true',
                        help='Rebuild the package cache first')


def create_parser() -> argparse.ArgumentParser:
    """Create the main argument parser with all commands and aliases."""

    parser = argparse.ArgumentParser(
        prog='apm',
        description='Package manager for atomic systems',
        epilog='Use "apm <command> --help" for command-specific help.'
    )
    parser.add_argument('--version', '-V', action='version', version=f'apm {__version__}')
    parser.add_argument('--verbose', '-v', action='store_true', help='Verbose output')
    parser.add_argument('--nocolor', action='store_true', help='Disable colored output')

    # Parent parser for display options (inherited by subparsers)
    display_parent = argparse.ArgumentParser(add_help=False)
    display_parent.add_argument('--json', action='store_true', help='JSON output for scripting')

    parser.register('action', 'parsers', AliasedSubParsersAction)
    subparsers = parser.add_subparsers(dest='command', title='commands', metavar='<command>')

    # =========================================================================
    # install / remove
    # =========================================================================
    for name, aliases, verb in (('install', ['i'], 'install'),
                                ('remove', ['rm'], 'remove')):
        op_parser = subparsers.add_parser(
            name, aliases=aliases,
            help=f'{verb.capitalize()} packages',
            parents=[display_parent]
        )
        op_parser.add_argument(
            'packages', nargs='+',
            help=f'Package names to {verb} (name+ forces install, name- forces removal)'
        )
        op_parser.add_argument(
            '--apply', '-a', action='store_true',
            help='Record the change in the system image (atomic systems)'
        )
        op_parser.add_argument('--auto', '-y', action='store_true', help='No confirmation')

    for name in ('check-install', 'check-remove'):
        check_parser = subparsers.add_parser(
            name, help='Simulate and report what would change',
            parents=[display_parent]
        )
        check_parser.add_argument('packages', nargs='+', help='Package names')

    # =========================================================================
    # cache queries
    # =========================================================================
    subparsers.add_parser('update', aliases=['up'], help='Rebuild the package cache',
                          parents=[display_parent])

    info_parser = subparsers.add_parser('info', help='Show package details',
                                        parents=[display_parent])
    info_parser.add_argument('package', help='Package name')

    list_parser = subparsers.add_parser('list', aliases=['l'], help='List packages',
                                        parents=[display_parent])
    _add_list_arguments(list_parser)

    search_parser = subparsers.add_parser('search', aliases=['s'], help='Search packages by name',
                                          parents=[display_parent])
    search_parser.add_argument('pattern', help='Part of the package name')
    search_parser.add_argument('--installed', '-i', action='store_true',
                               help='Only installed packages')

    # =========================================================================
    # image
    # =========================================================================
    image_parser = subparsers.add_parser('image', help='System image management')
    image_subparsers = image_parser.add_subparsers(dest='image_command', metavar='COMMAND')
    image_subparsers.add_parser('status', help='Booted image and configuration',
                                parents=[display_parent])
    image_subparsers.add_parser('apply', help='Rebuild the image from the configuration',
                                parents=[display_parent])
    history_parser = image_subparsers.add_parser('history', help='Image rebuild history',
                                                 parents=[display_parent])
    history_parser.add_argument('--image', default='', help='Filter by image name')
    history_parser.add_argument('--limit', type=int, default=10)
    history_parser.add_argument('--offset', type=int, default=0)

    # =========================================================================
    # distrobox / d
    # =========================================================================
    box_parser = subparsers.add_parser('distrobox', aliases=['d'],
                                       help='Packages inside distrobox containers')
    box_subparsers = box_parser.add_subparsers(dest='box_command', metavar='COMMAND')

    box_update = box_subparsers.add_parser('update', help='Rescan a container',
                                           parents=[display_parent])
    box_update.add_argument('--container', '-c', required=True)

    box_info = box_subparsers.add_parser('info', help='Show package details',
                                         parents=[display_parent])
    box_info.add_argument('--container', '-c', required=True)
    box_info.add_argument('package')

    box_search = box_subparsers.add_parser('search', help='Search packages',
                                           parents=[display_parent])
    box_search.add_argument('--container', '-c', required=True)
    box_search.add_argument('pattern')

    box_list = box_subparsers.add_parser('list', help='List packages',
                                         parents=[display_parent])
    box_list.add_argument('--container', '-c', required=True)
    _add_list_arguments(box_list)

    box_install = box_subparsers.add_parser('install', help='Install a package',
                                            parents=[display_parent])
    box_install.add_argument('--container', '-c', required=True)
    box_install.add_argument('package')
    box_install.add_argument('--export', '-e', action='store_true',
                             help='Export the application to the host')

    box_remove = box_subparsers.add_parser('remove', help='Remove a package',
                                           parents=[display_parent])
    box_remove.add_argument('--container', '-c', required=True)
    box_remove.add_argument('package')
    box_remove.add_argument('--only-export', '-o', action='store_true',
                            help='Only remove the export, keep the package')

    box_subparsers.add_parser('container-list', help='List containers',
                              parents=[display_parent])
    box_rm = box_subparsers.add_parser('container-remove', help='Delete a container',
                                       parents=[display_parent])
    box_rm.add_argument('name')

    return parser


# =============================================================================
# Output
# =============================================================================

def prompt_confirm(outcome: DryRunOutcome, operation: Operation) -> bool:
    """Show the simulated change and ask the user."""
    titles = {
        'new_installed_packages': 'New packages',
        'extra_installed': 'Extra packages',
        'upgraded_packages': 'Upgraded packages',
        'removed_packages': 'Removed packages',
    }
    for attr, title in titles.items():
        names = getattr(outcome, attr)
        if names:
            paint = colors.PACKAGE_LIST_COLORS[attr]
            print(f"{colors.bold(title)} ({len(names)}):")
            print("  " + " ".join(paint(n) for n in names))

    print(f"\n{outcome.new_installed_count} to install, {outcome.upgraded_count} to upgrade, "
          f"{outcome.removed_count} to remove, {outcome.not_upgraded_count} not upgraded")

    try:
        answer = input(f"Continue with {operation.value}? [y/N] ")
    except (EOFError, KeyboardInterrupt):
        print()
        return False
    return answer.strip().lower() in ('y', 'yes')


def _print_package(pkg: dict):
    state = colors.success('installed') if pkg.get('installed') else colors.dim('available')
    version = pkg.get('versionInstalled') or pkg.get('version', '')
    print(f"  {colors.bold(pkg['name'])} {version} [{state}]")


def print_response(response: Response, as_json: bool = False):
    """Render a Response on stdout."""
    if as_json:
        print(json.dumps(response.to_dict(), indent=2, ensure_ascii=False, default=str))
        return

    message = response.message
    print(colors.error(message) if response.error else colors.success(message))

    data = response.data
    for pkg in data.get('packages') or []:
        if isinstance(pkg, dict):
            _print_package(pkg)
        else:
            print(f"  {pkg}")

    if 'packageInfo' in data:
        for key, value in data['packageInfo'].items():
            if isinstance(value, list):
                value = ', '.join(value)
            print(f"  {colors.bold(key + ':'):<24} {value}")

    if 'totalCount' in data:
        print(colors.dim(f"Total: {data['totalCount']}"))

    for entry in data.get('history') or []:
        print(f"  {entry['date']}  {entry['imageName']}")

    for container in data.get('containers') or []:
        print(f"  {colors.bold(container['name'])} {container.get('image', '')} "
              f"{colors.dim(container.get('status', ''))}")

    if 'bootedImage' in data:
        print(f"  {data['bootedImage']['status']}")


# =============================================================================
# Commands
# =============================================================================

def _list_params(args) -> ListParams:
    return ListParams(
        sort=args.sort,
        order=args.order,
        limit=args.limit,
        offset=args.offset,
        filter_field=args.filter_field,
        filter_value=args.filter_value,
        force_update=args.force_update,
        container=getattr(args, 'container', '') or '',
    )


def cmd_transaction(args, db: PackageDatabase) -> Response:
    from ..core.backend import AptBackend
    from ..core.transaction import TransactionCoordinator

    confirmer = None if args.auto else prompt_confirm
    coordinator = TransactionCoordinator(db, AptBackend(), confirmer=confirmer)
    if args.command in ('install', 'i'):
        return coordinator.install(args.packages, apply=args.apply)
    return coordinator.remove(args.packages, apply=args.apply)


def cmd_check(args, db: PackageDatabase) -> Response:
    from ..core.backend import AptBackend
    from ..core.transaction import TransactionCoordinator

    coordinator = TransactionCoordinator(db, AptBackend())
    if args.command == 'check-install':
        return coordinator.check_install(args.packages)
    return coordinator.check_remove(args.packages)


def cmd_system(args, db: PackageDatabase) -> Response:
    from ..core.backend import AptBackend
    from ..core.system import SystemService

    service = SystemService(db, AptBackend())
    if args.command in ('update', 'up'):
        return service.update()
    if args.command == 'info':
        return service.info(args.package)
    if args.command in ('list', 'l'):
        return service.list(_list_params(args))
    if args.command in ('search', 's'):
        return service.search(args.pattern, args.installed)

    # image
    if args.image_command == 'apply':
        return service.image_apply()
    if args.image_command == 'history':
        return service.image_history(args.image, args.limit, args.offset)
    return service.image_status()


def cmd_distrobox(args, db: PackageDatabase) -> Response:
    from ..core.distrobox import ContainerService

    service = ContainerService(db)
    command = args.box_command
    if command == 'update':
        return service.update(args.container)
    if command == 'info':
        return service.info(args.container, args.package)
    if command == 'search':
        return service.search(args.container, args.pattern)
    if command == 'list':
        return service.list(_list_params(args))
    if command == 'install':
        return service.install(args.container, args.package, args.export)
    if command == 'remove':
        return service.remove(args.container, args.package, args.only_export)
    if command == 'container-remove':
        return service.container_remove(args.name)
    return service.container_list()


def main(argv=None) -> int:
    """Main CLI entry point."""
    parser = create_parser()
    args = parser.parse_args(argv)

    # Configure logging based on verbose flag
    if getattr(args, 'verbose', False):
        import logging
        logging.basicConfig(
            level=logging.DEBUG,
            format='%(name)s - %(levelname)s - %(message)s',
            stream=sys.stderr
        )

    colors.init(nocolor=getattr(args, 'nocolor', False))

    if not args.command:
        parser.print_help()
        return 1

    db = PackageDatabase()

    try:
        if args.command in ('install', 'i', 'remove', 'rm'):
            response = cmd_transaction(args, db)
        elif args.command in ('check-install', 'check-remove'):
            response = cmd_check(args, db)
        elif args.command in ('distrobox', 'd'):
            response = cmd_distrobox(args, db)
        else:
            response = cmd_system(args, db)

        print_response(response, as_json=getattr(args, 'json', False))
        return 1 if response.error else 0

    except KeyboardInterrupt:
        print("\nInterrupted")
        return 130

    except Exception as e:
        if args.verbose:
            import traceback
            traceback.print_exc()
        else:
            print(colors.error(f"Error: {e}"))
        return 1

    finally:
        db.close()


if __name__ == '__main__':
    sys.exit(main())
