"""HTML and plain-text bodies for notification emails.

Every interpolated value is HTML-escaped; issue and proposal text comes
from untrusted sources (issue authors and the language model).
"""

from html import escape
from typing import Optional
from urllib.parse import quote

from src.bugfixer.github.models import Issue
from src.bugfixer.proposals.models import FixProposal

_WRAPPER = '<div style="font-family:Arial,sans-serif;max-width:800px;margin:0 auto;">{body}</div>'
_PRE = (
    '<pre style="background:{bg};padding:10px;border-radius:5px;'
    'white-space:pre-wrap;"><code>{code}</code></pre>'
)
_BUTTON = (
    '<form method="post" action="{action}" style="display:inline-block;margin-right:12px;">'
    '<button type="submit" style="background:{color};color:#fff;border:none;'
    'padding:12px 24px;border-radius:5px;font-size:16px;cursor:pointer;">{label}</button>'
    "</form>"
)


def decision_url(validation_url: str, proposal_id: str, decision: str, repo_url: str) -> str:
    """URL that approves or rejects a proposal.

    Example:
        >>> decision_url("https://fixer.example.com", "fix-1-ab", "approve", "https://github.com/o/r")
        'https://fixer.example.com/validate/fix-1-ab/approve?repo=https%3A%2F%2Fgithub.com%2Fo%2Fr'
    """
    return (
        f"{validation_url.rstrip('/')}/validate/{quote(proposal_id, safe='')}/{decision}"
        f"?repo={quote(repo_url, safe='')}"
    )


def issue_link(repo_url: str, issue_number: int) -> str:
    return f"{repo_url.rstrip('/')}/issues/{issue_number}"


def validation_request_subject(proposal: FixProposal) -> str:
    return f"[Bug Fix] Validate fix for #{proposal.issue_number}: {proposal.title[:50]}"


def render_validation_request(
    proposal: FixProposal,
    repo_url: str,
    validation_url: str,
) -> str:
    """Email asking a human to approve or reject a proposal."""
    changes = []
    for change in proposal.code_changes:
        original = (
            _PRE.format(bg="#fdecea", code=escape(change.original_code))
            if change.original_code
            else "<p><em>New file</em></p>"
        )
        changes.append(
            f"<h4>{escape(change.file_path)}</h4>"
            f"<p><em>{escape(change.explanation)}</em></p>"
            f"<p><strong>Original</strong></p>{original}"
            f"<p><strong>New</strong></p>"
            f"{_PRE.format(bg='#e6f4ea', code=escape(change.new_code))}"
        )

    approve = _BUTTON.format(
        action=escape(decision_url(validation_url, proposal.id, "approve", repo_url)),
        color="#2e7d32",
        label="Approve and apply",
    )
    reject = _BUTTON.format(
        action=escape(decision_url(validation_url, proposal.id, "reject", repo_url)),
        color="#c62828",
        label="Reject",
    )

    body = (
        "<h2>Fix proposed</h2>"
        f'<p><strong>Issue:</strong> <a href="{escape(issue_link(repo_url, proposal.issue_number))}">'
        f"#{proposal.issue_number}</a> - {escape(proposal.title)}</p>"
        f"<p><strong>Confidence:</strong> {proposal.confidence}%</p>"
        f"<p>{escape(proposal.description)}</p>"
        "<hr/><h3>Changes</h3>"
        f"{''.join(changes)}"
        f'<hr/><div style="margin:20px 0;">{approve}{reject}</div>'
        f'<p style="color:#666;font-size:12px;">Proposal ID: {escape(proposal.id)}</p>'
    )
    return _WRAPPER.format(body=body)


def no_fix_subject(issue: Issue) -> str:
    return f"[Bug Fix] No fix for #{issue.number}: {issue.title[:50]}"


def render_no_fix_notice(issue: Issue, repo_url: str, reason: str) -> str:
    """Email explaining why no fix was proposed."""
    body = (
        "<h2>No fix proposed</h2>"
        f'<p><strong>Issue:</strong> <a href="{escape(issue_link(repo_url, issue.number))}">'
        f"#{issue.number}</a> - {escape(issue.title)}</p>"
        '<div style="background:#fff3cd;padding:15px;border-radius:5px;margin:20px 0;">'
        f"<h3>Why no fix?</h3><p>{escape(reason)}</p></div>"
        '<div style="background:#f8f9fa;padding:15px;border-radius:5px;">'
        f"<h4>Issue description</h4><pre>{escape(issue.body)}</pre></div>"
    )
    return _WRAPPER.format(body=body)


def outcome_subject(proposal: FixProposal, success: bool) -> str:
    verdict = "Applied" if success else "Failed"
    return f"[Bug Fix] {verdict}: #{proposal.issue_number} {proposal.title[:50]}"


def render_outcome(proposal: FixProposal, pr_url: Optional[str], success: bool) -> str:
    """Email reporting the result of an approved proposal."""
    if success:
        link = escape(pr_url or "")
        result = (
            "<h2>Fix applied</h2>"
            f'<p>Pull request: <a href="{link}">{link}</a></p>'
        )
    else:
        result = (
            "<h2>Fix could not be applied</h2>"
            "<p>The proposal was rejected and no pull request was created.</p>"
        )
        if proposal.error:
            result += _PRE.format(bg="#fdecea", code=escape(proposal.error))

    body = (
        f"{result}"
        f"<p><strong>Issue:</strong> #{proposal.issue_number} - {escape(proposal.title)}</p>"
        f"<p><strong>Proposal ID:</strong> {escape(proposal.id)}</p>"
    )
    return _WRAPPER.format(body=body)
