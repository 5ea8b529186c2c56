"""
OneDrive Inheritance Audit Package

This package audits permission inheritance in OneDrive using the Microsoft
Graph API with OAuth tokens from rclone configuration, reporting every folder
or file whose access differs from its parent.

Modules:
- permissions: Normalized permission snapshots (editors, viewers, link sharing)
- diff: Parent/child permission comparison and root summary
- checkpoint: SQLite-backed resumable work queue
- traversal: Time-bounded breadth-first audit engine
- report: Partitioned CSV report output
- session: Start, resume and clear an audit
- graph_store: Microsoft Graph tree store
- config_utils: rclone token and audit settings
"""

__version__ = "1.0.0"
__author__ = "OneDrive ACL Project"
