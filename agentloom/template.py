from typing import Any, Callable, MutableMapping

from jinja2 import BaseLoader, ChoiceLoader, Environment, PackageLoader, PrefixLoader, Template


class TemplateLoader(BaseLoader):
    """Prefix loader mapping ``<lang>/<name>`` to the package's ``templates/<lang>`` directory"""

    def __init__(self, package_name: str, default_lang: str = 'en', languages: tuple[str, ...] = ('en',)):
        self.default_lang = default_lang
        self.loader_map: dict[str, list[BaseLoader]] = {
            lang: [PackageLoader(package_name, package_path=f"templates/{lang}")]
            for lang in languages
        }
        self._loader = self._build_jinja_loader(self.loader_map)

    @staticmethod
    def _build_jinja_loader(loader_map: dict[str, list[BaseLoader]]):
        choice_loaders = dict((key, ChoiceLoader(loaders)) for (key, loaders) in loader_map.items())
        return PrefixLoader(choice_loaders)

    def get_source(self, environment: Environment, template: str) -> tuple[str, str | None, Callable[[], bool] | None]:
        return self._loader.get_source(environment, template)

    def list_templates(self) -> list[str]:
        return self._loader.list_templates()

    def load(self, environment: Environment, name: str, globals: MutableMapping[str, Any] | None = None) -> Template:
        return self._loader.load(environment, name, globals)

    def add_loaders(self, *args: BaseLoader, **kwargs: BaseLoader | list[BaseLoader]):
        """Register extra loaders; positional loaders go to the default language and take priority."""
        if args:
            kwargs.setdefault(self.default_lang, [])
            existing = kwargs[self.default_lang]
            kwargs[self.default_lang] = list(args) + (existing if isinstance(existing, list) else [existing])
        for lang, loader in kwargs.items():
            loaders = [loader] if isinstance(loader, BaseLoader) else list(loader)
            self.loader_map[lang] = loaders + self.loader_map.get(lang, [])
        self._loader = self._build_jinja_loader(self.loader_map)


class TemplateEnvironment(Environment):
    def __init__(self, package_name: str, default_lang: str | None = None, **kwargs: Any):
        self.loader = TemplateLoader(package_name, default_lang or 'en')
        kwargs.setdefault('trim_blocks', True)
        kwargs.setdefault('lstrip_blocks', True)
        super().__init__(loader=self.loader, **kwargs)

    def add_loaders(self, *args: BaseLoader, **kwargs: BaseLoader | list[BaseLoader]):
        self.loader.add_loaders(*args, **kwargs)

    def load_template(self, name: str, lang: str | None = None, globals: MutableMapping[str, Any] | None = None):
        default_lang = self.loader.default_lang
        # Build candidate languages list by priority
        candidate_langs: list[str] = []
        for l in [lang, default_lang, 'en', *self.loader.loader_map.keys()]:
            if l and l not in candidate_langs:
                candidate_langs.append(l)
        template_names = [f"{l}/{name}" for l in candidate_langs]
        return self.select_template(names=template_names, globals=globals)
