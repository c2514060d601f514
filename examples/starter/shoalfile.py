from shoal import InputBuildSettings, Series, build_tasks


SETTINGS = InputBuildSettings(
    html_ext=False,
)

_tasks = build_tasks()
TASKS = {
    'release': Series('release', _tasks['build'], _tasks['zip']),
}
