"""Report rendering for findings and remediation plans."""
