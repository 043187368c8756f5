# SPDX-License-Identifier: Apache-2.0
"""``python -m studyledger`` runs the operational CLI."""
from studyledger.cli import main

if __name__ == "__main__":
    main()
