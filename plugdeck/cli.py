#!/usr/bin/env python3
# plugdeck/cli.py
"""
Operator CLI for plugdeck.
Inspects plugin manifests, checks settings files and previews menus without a running host.
"""

import sys
import json
import asyncio
import argparse

from plugdeck.config import RuntimeSettings
from plugdeck.observability.logging import configure_logging
from plugdeck.plugins.errors import PluginRuntimeError
from plugdeck.plugins.menu import MenuComposer, parse_capabilities
from plugdeck.plugins.validator import apply_defaults, validate
from plugdeck.security.sanitizer import mask_config, sanitize


def print_json(data):
    """Pretty print JSON data."""
    print(json.dumps(data, indent=2, default=str))


def read_json(path):
    if path == "-":
        return json.load(sys.stdin)
    with open(path, encoding="utf-8") as f:
        return json.load(f)


def cmd_list(args, settings):
    """List plugins and whether their manifests load."""
    loader = settings.make_loader()
    outcomes = asyncio.run(loader.load_many(settings.plugin_keys(loader)))
    if not outcomes:
        print(f"No plugins found in {settings.plugins_dir}")
        return 0
    print(f"Plugins ({len(outcomes)}):")
    for outcome in outcomes:
        if outcome.ok:
            m = outcome.manifest
            print(f"  ✅ {outcome.plugin_key} {m.name} v{m.version} "
                  f"(settings: {len(m.settings_schema)}, jobs: {len(m.jobs)})")
        else:
            print(f"  ❌ {outcome.plugin_key} {outcome.error.__class__.__name__}: {outcome.error}")
    return 0 if all(o.ok for o in outcomes) else 1


def cmd_show(args, settings):
    """Show a decoded manifest."""
    manifest = asyncio.run(settings.make_loader().load(args.plugin))
    print_json(manifest.summary())
    return 0


def cmd_check_config(args, settings):
    """Validate a settings file against a plugin's settings schema."""
    manifest = asyncio.run(settings.make_loader().load(args.plugin))
    values = read_json(args.file)
    if not isinstance(values, dict):
        print("Error: settings file must contain a JSON object")
        return 2
    if args.defaults:
        values = apply_defaults(manifest, values)

    errors = validate(manifest, values)
    if errors:
        print(f"❌ {len(errors)} problem(s) in {args.file}:")
        for error in errors:
            print(f"  {error.field}: {error.message}")
        return 1
    print(f"✅ {args.file} is valid for {args.plugin}")
    if args.verbose:
        print_json(mask_config(manifest.settings_schema, values))
    return 0


def cmd_menus(args, settings):
    """Compose and filter menus the way the host navigation would."""
    loader = settings.make_loader()
    composer = MenuComposer(loader, mount_root=settings.mount_root,
                            generated_items=args.generated or settings.menu_generated_items)
    keys = args.plugins or settings.plugin_keys(loader)
    capabilities = parse_capabilities(args.scopes) if args.scopes is not None else {"*"}
    composition = asyncio.run(composer.compose_and_filter(keys, capabilities))
    print_json(composition.to_dict())
    return 1 if composition.diagnostics and args.strict else 0


def cmd_sanitize(args, settings):
    """Print a JSON document with sensitive values masked."""
    print_json(sanitize(read_json(args.file), extra_keys=args.mask or ()))
    return 0


def cmd_serve(args, settings):
    """Run the HTTP API."""
    import uvicorn
    from plugdeck.api.main import create_app

    uvicorn.run(create_app(settings), host=args.host, port=args.port, log_level=settings.log_level.lower())
    return 0


def cmd_worker(args, settings):
    """Run the job worker until SIGTERM/SIGINT."""
    from plugdeck.workers.runner import main as worker_main
    return worker_main(settings)


COMMANDS = {
    'list': cmd_list,
    'show': cmd_show,
    'check-config': cmd_check_config,
    'menus': cmd_menus,
    'sanitize': cmd_sanitize,
    'serve': cmd_serve,
    'worker': cmd_worker,
}


def build_parser():
    parser = argparse.ArgumentParser(
        prog="plugdeck",
        description="Plugin runtime CLI for plugdeck",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s list                                  # Load every plugin manifest
  %(prog)s show github                           # Show a decoded manifest
  %(prog)s check-config github settings.json     # Validate a settings file
  %(prog)s menus github jira --scopes repo:read  # Preview filtered navigation
  %(prog)s sanitize event.json                   # Mask secrets in a payload
  %(prog)s worker                                # Run scheduled plugin jobs
        """
    )

    # Global options
    parser.add_argument('--plugins-dir',
                        help='Plugins directory (default: PLUGDECK_PLUGINS_DIR or ./plugins)')
    parser.add_argument('--verbose', '-v', action='store_true',
                        help='Verbose output')

    subparsers = parser.add_subparsers(dest='command', help='Available commands')

    subparsers.add_parser('list', help='List plugins and manifest health')

    show_parser = subparsers.add_parser('show', help='Show a plugin manifest')
    show_parser.add_argument('plugin', help='Plugin key')

    check_parser = subparsers.add_parser('check-config', help='Validate a settings file')
    check_parser.add_argument('plugin', help='Plugin key')
    check_parser.add_argument('file', help='JSON settings file, or - for stdin')
    check_parser.add_argument('--defaults', action='store_true',
                              help='Fill declared defaults before validating')

    menus_parser = subparsers.add_parser('menus', help='Compose plugin menus')
    menus_parser.add_argument('plugins', nargs='*', help='Plugin keys (default: all enabled)')
    menus_parser.add_argument('--scopes',
                              help='Comma separated caller scopes (default: unrestricted)')
    menus_parser.add_argument('--generated', action='store_true',
                              help='Add the Collected Data and Activity Logs pages')
    menus_parser.add_argument('--strict', action='store_true',
                              help='Exit non-zero when any diagnostic is produced')

    sanitize_parser = subparsers.add_parser('sanitize', help='Mask sensitive values in a JSON file')
    sanitize_parser.add_argument('file', help='JSON file, or - for stdin')
    sanitize_parser.add_argument('--mask', action='append',
                                 help='Additional field name to mask (repeatable)')

    serve_parser = subparsers.add_parser('serve', help='Run the HTTP API')
    serve_parser.add_argument('--host', default='127.0.0.1')
    serve_parser.add_argument('--port', type=int, default=8080)

    subparsers.add_parser('worker', help='Run the job worker')

    return parser


def main(argv=None):
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 1

    settings = RuntimeSettings.from_environment()
    if args.plugins_dir:
        settings.plugins_dir = args.plugins_dir
    configure_logging("DEBUG" if args.verbose else settings.log_level)

    try:
        return COMMANDS[args.command](args, settings)
    except PluginRuntimeError as e:
        print(f"Error: {e.__class__.__name__}: {e}")
        return 1
    except (OSError, json.JSONDecodeError) as e:
        print(f"Error: {e}")
        return 2


if __name__ == "__main__":
    sys.exit(main())
