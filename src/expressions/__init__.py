from .engine import ExpressionEvaluator, check_mergeable, evaluate_expression
from .syntax import ExpressionCompiler, compile_expression, tokenize
from .tree import Node, evaluate

__all__ = [
    "ExpressionCompiler",
    "ExpressionEvaluator",
    "Node",
    "check_mergeable",
    "compile_expression",
    "evaluate",
    "evaluate_expression",
    "tokenize",
]
