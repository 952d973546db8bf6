"""
Linear, role-gated approval workflows.

- A workflow snapshots its template's approval path at creation
- Each step is taken by exactly one actor holding the step's role
- completed and rejected are terminal
"""
