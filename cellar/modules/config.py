import configparser
import os

DEFAULT_LOCATIONS = [
    "/etc/cellar/cellar.conf",
    os.path.expanduser("~/.config/cellar/cellar.conf"),
]

DEFAULT_PREFIX = "/opt/cellar"


class CellarConfig:
    """
    INI configuration read from the first existing file in `locations`.
    No file at all is fine: every getter then returns its fallback.
    """

    def __init__(self, locations=None):
        if locations is None:
            env = os.environ.get("CELLAR_CONFIG")
            locations = ([env] if env else []) + DEFAULT_LOCATIONS
        self.use(locations)

    def use(self, locations):
        """Switch to other config files and reload."""
        self.locations = list(locations)
        self.reload()

    def reload(self):
        self.parser = configparser.ConfigParser()
        self.loaded_from = next((p for p in self.locations if os.path.isfile(p)), None)
        if self.loaded_from:
            self.parser.read(self.loaded_from)

    def _lookup(self, getter, section, option, fallback):
        try:
            return getter(section, option, fallback=fallback)
        except ValueError:
            return fallback

    def get(self, section, option, fallback=None):
        return self._lookup(self.parser.get, section, option, fallback)

    def getboolean(self, section, option, fallback=False):
        return self._lookup(self.parser.getboolean, section, option, fallback)

    def getint(self, section, option, fallback=0):
        return self._lookup(self.parser.getint, section, option, fallback)


class Settings:
    """
    Resolved paths and knobs for one run.

    Built from a CellarConfig by the CLI; tests build it directly.
    """

    def __init__(self,
                 prefix: str = DEFAULT_PREFIX,
                 cellar: str = None,
                 state_dir: str = None,
                 cache_dir: str = None,
                 build_root: str = None,
                 formula_dir: str = None,
                 jobs: int = None,
                 use_fakeroot: bool = False,
                 step_timeout: int = None,
                 source_fallback: bool = True,
                 allow_older_os_bottles: bool = True,
                 link: bool = True):
        self.prefix = os.path.abspath(prefix)
        self.cellar = os.path.abspath(cellar or os.path.join(self.prefix, "Cellar"))
        self.state_dir = os.path.abspath(state_dir or os.path.join(self.prefix, "var", "cellar"))
        self.cache_dir = os.path.abspath(cache_dir or os.path.join(self.state_dir, "downloads"))
        self.build_root = os.path.abspath(build_root) if build_root else None
        self.formula_dir = os.path.abspath(formula_dir or os.path.join(self.prefix, "Formula"))
        self.jobs = jobs or os.cpu_count() or 1
        self.use_fakeroot = use_fakeroot
        self.step_timeout = step_timeout or None
        self.source_fallback = source_fallback
        self.allow_older_os_bottles = allow_older_os_bottles
        self.link = link

    @classmethod
    def from_config(cls, cfg: "CellarConfig" = None, **overrides) -> "Settings":
        """Settings from the config file; non-None `overrides` win (CLI flags)."""
        cfg = cfg or config
        values = dict(
            prefix=cfg.get("paths", "prefix", fallback=DEFAULT_PREFIX),
            cellar=cfg.get("paths", "cellar"),
            state_dir=cfg.get("paths", "state_dir"),
            cache_dir=cfg.get("paths", "cache_dir"),
            build_root=cfg.get("paths", "build_root"),
            formula_dir=cfg.get("paths", "formula_dir"),
            jobs=cfg.getint("build", "jobs", fallback=0),
            use_fakeroot=cfg.getboolean("build", "use_fakeroot", fallback=False),
            step_timeout=cfg.getint("build", "step_timeout", fallback=0),
            source_fallback=cfg.getboolean("build", "source_fallback", fallback=True),
            allow_older_os_bottles=cfg.getboolean("build", "allow_older_os_bottles", fallback=True),
            link=cfg.getboolean("build", "link", fallback=True),
        )
        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**values)

    def keg_path(self, name: str, version: str) -> str:
        return os.path.join(self.cellar, name, version)

    def __repr__(self):
        return f"Settings(prefix={self.prefix!r}, cellar={self.cellar!r}, jobs={self.jobs})"


# Default instance shared by the other modules
config = CellarConfig()
