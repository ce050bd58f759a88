import atexit

from django.apps import AppConfig


class ConversionsConfig(AppConfig):
    name = 'conversions'
    verbose_name = 'Media conversions'

    def ready(self):
        """Stop the process-wide engine, if one was started, when the interpreter exits"""
        from conversions.engine import reset_engine

        atexit.register(reset_engine, wait=False)
