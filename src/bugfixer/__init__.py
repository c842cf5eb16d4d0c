"""Issue-to-pull-request bug fixing agent.

This package watches a repository's issue tracker, asks a language model
to propose a fix, and applies approved proposals:
- Repository context assembly for the language model
- Fix proposal generation and strict response parsing
- In-memory proposal lifecycle with approve/reject guards
- Patch application, lint/build/test validation and PR publication
- Email notifications for human-in-the-loop approval
"""
