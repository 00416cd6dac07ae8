"""Async-local context variables for rule execution.

Uses Python's contextvars module so the value follows the asyncio task that
runs a rule batch without explicit parameter passing.
"""

from contextvars import ContextVar

# Name of the rule currently executing on the engine worker.
#
# Set by: RuleExecutionEngine._run_rule() around each rule's effects
# Read by: RuleExecutionEngine.submit() to reject calls made from inside an
#          effect operand, which would wait on the worker that is running it
current_rule: ContextVar[str | None] = ContextVar("current_rule", default=None)
