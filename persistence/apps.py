from django.apps import AppConfig


class PersistenceConfig(AppConfig):
    name = "persistence"
    verbose_name = "Local persistence"

    def ready(self):
        from .container import build_container

        self.container = build_container()
