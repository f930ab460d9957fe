"""Task unit implementations."""

from express_workflow.functions.remote import LambdaInvoker, lambda_task
from express_workflow.functions.text import TEXT_PIPELINE, register_text_functions

__all__ = ["TEXT_PIPELINE", "LambdaInvoker", "lambda_task", "register_text_functions"]
