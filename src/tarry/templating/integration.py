"""Kida environment setup.

Creates a kida Environment from tarry's AppConfig. The environment is
created once during ``App._freeze()`` and passed through the request
pipeline, including into every ``Deferred`` so late bodies render
templates the same way synchronous routes do.
"""

from kida import Environment, FileSystemLoader

from tarry.config import AppConfig
from tarry.templating.returns import InlineTemplate, Template


def create_environment(config: AppConfig) -> Environment:
    """Create a kida Environment over ``config.template_dir``."""
    return Environment(
        loader=FileSystemLoader(str(config.template_dir)),
        autoescape=config.autoescape,
        auto_reload=config.debug,
    )


def render_template(env: Environment, tpl: Template) -> str:
    """Render a file template to string."""
    template = env.get_template(tpl.name)
    return template.render(tpl.context)


def render_inline(env: Environment | None, tpl: InlineTemplate) -> str:
    """Render a string template, with a bare environment if none is configured."""
    template = (env or Environment()).from_string(tpl.source)
    return template.render(tpl.context)
