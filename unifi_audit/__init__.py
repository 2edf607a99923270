"""UniFi network security audit package.

Audits a UniFi-managed network against a security policy catalogue and
produces severity-scored findings plus a 0-100 compliance score:
- unifi_security_audit: Run the full audit for a site
- unifi_audit_summary: Latest score and most recent findings
- unifi_audit_dismiss_issue / unifi_audit_restore_issue: Manage dismissals
- unifi_audit_clear_dismissed: Clear all dismissals for a site
- unifi_audit_list_issues: List active or dismissed findings
"""

__version__ = "0.1.0"
