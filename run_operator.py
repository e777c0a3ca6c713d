#!/usr/bin/env python3
"""
Runs the AppConfig operator with Kopf.

Launches Kopf's CLI with the operator handlers registered, passing every
argument through to `kopf run`.

Usage:
    python run_operator.py [any kopf run arguments]

Examples:
    python run_operator.py --verbose --all-namespaces
    python run_operator.py -n my-namespace --log-format=json
"""

import sys

if __name__ == '__main__':
    import kopf.cli

    # Registers handlers via decorators
    import microboot.app  # noqa: F401

    # Behave as if the user called: kopf run <args>
    sys.argv.insert(1, 'run')

    sys.exit(kopf.cli.main(prog_name="kopf"))
