# SPDX-License-Identifier: Apache-2.0
"""StudyLedger: commit attendance sessions for study groups, reconciled against a remote ledger."""

__version__ = "0.1.0"
