from django.apps import apps
from django.test.runner import DiscoverRunner


class InstalledAppsOnlyDiscoverRunner(DiscoverRunner):
    """Without labels, run only the project's own apps, never the contrib suites."""

    project_prefix = 'apps.'

    def build_suite(self, test_labels=None, **kwargs):
        if not test_labels:
            test_labels = sorted(
                app_config.name
                for app_config in apps.get_app_configs()
                if app_config.name.startswith(self.project_prefix)
            )
        return super().build_suite(test_labels=test_labels, **kwargs)
