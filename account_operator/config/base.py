import os
import re
import typing
from pathlib import Path
from typing import Any

import yaml
from humps import decamelize
from pydantic import BaseModel
from pydantic.fields import FieldInfo
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
)

PROVIDER_WRAPPER_PATTERN = r"{{ from (.*) }}"
PROVIDER_CONFIG_PATTERN = r"^[a-zA-Z0-9]+ .*$"


def parse_config_provider(value: str) -> tuple[str, str]:
    match = re.match(PROVIDER_CONFIG_PATTERN, value)
    if not match:
        raise ValueError(
            f"Invalid pattern: {value}. Pattern should match: {PROVIDER_CONFIG_PATTERN}"
        )

    provider_type, provider_value = value.split(" ", 1)

    return provider_type, provider_value


def load_from_config_provider(config_provider: str) -> Any:
    provider_type, value = parse_config_provider(config_provider)
    if provider_type == "env":
        result = os.environ.get(value)
        if result is None:
            raise ValueError(f"Environment variable not found: {value}")
        return result
    else:
        raise ValueError(f"Invalid provider type: {provider_type}")


def _nested_model(annotation: Any) -> type[BaseModel] | None:
    if isinstance(annotation, type) and issubclass(annotation, BaseModel):
        return annotation
    return None


def _dict_value_model(annotation: Any) -> type[BaseModel] | None:
    if typing.get_origin(annotation) is not dict:
        return None
    args = typing.get_args(annotation)
    return _nested_model(args[1]) if len(args) == 2 else None


def decamelize_config(
    settings_model: type[BaseModel] | None, config: dict[str, Any]
) -> dict[str, Any]:
    """
    Normalizing the config yaml file to work with snake_case.
    Keys of mapping-typed fields (e.g. pool names) are kept as written, their values are normalized.
    """
    result: dict[str, Any] = {}
    for key, value in config.items():
        decamelized_key = decamelize(key)
        if isinstance(value, dict) and settings_model is not None:
            field = settings_model.model_fields.get(decamelized_key)
            annotation = field.annotation if field else None
            if nested := _nested_model(annotation):
                result[decamelized_key] = decamelize_config(nested, value)
            elif value_model := _dict_value_model(annotation):
                result[decamelized_key] = {
                    item_key: (
                        decamelize_config(value_model, item)
                        if isinstance(item, dict)
                        else item
                    )
                    for item_key, item in value.items()
                }
            else:
                result[decamelized_key] = value
        else:
            result[decamelized_key] = value
    return result


def parse_providers(config: dict[str, Any]) -> dict[str, Any]:
    """Resolve `{{ from env NAME }}` values, dropping those that fail to load."""
    parsed: dict[str, Any] = {}
    for key, value in config.items():
        if isinstance(value, dict):
            parsed[key] = parse_providers(value)
        elif isinstance(value, str) and (
            provider_match := re.match(PROVIDER_WRAPPER_PATTERN, value)
        ):
            try:
                parsed[key] = load_from_config_provider(provider_match.group(1))
            except ValueError:
                pass
        else:
            parsed[key] = value
    return parsed


class YamlConfigSettingsSource(PydanticBaseSettingsSource):
    def __init__(self, settings_cls: type[BaseSettings], base_path: str = "./"):
        super().__init__(settings_cls)
        self.base_path = base_path

    def get_field_value(
        self, field: FieldInfo, field_name: str
    ) -> tuple[Any, str, bool]:
        return None, field_name, False

    def read_yaml(self) -> dict[str, Any]:
        yaml_file = self.config.get("yaml_file")
        assert yaml_file, "Settings yaml_file not properly configured"
        path = Path(self.base_path, str(yaml_file))
        if not path.exists():
            return {}
        return yaml.safe_load(path.read_text("utf-8")) or {}

    def __call__(self) -> dict[str, Any]:
        snake_case_config = decamelize_config(self.settings_cls, self.read_yaml())
        return parse_providers(snake_case_config)


class BaseOperatorSettings(BaseSettings):
    model_config = SettingsConfigDict(
        yaml_file="./config.yaml",
        env_prefix="OPERATOR__",
        env_nested_delimiter="__",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    def get_sensitive_fields_data(self) -> set[str]:
        return _get_sensitive_information(self)

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        return (
            init_settings,
            env_settings,
            dotenv_settings,
            YamlConfigSettingsSource(settings_cls),
        )


class BaseOperatorModel(BaseModel):
    def get_sensitive_fields_data(self) -> set[str]:
        return _get_sensitive_information(self)


def _get_sensitive_information(model: BaseModel) -> set[str]:
    fields = type(model).model_fields
    sensitive_set = {
        str(getattr(model, field_name))
        for field_name, field in fields.items()
        if isinstance(field.json_schema_extra, dict)
        and field.json_schema_extra.get("sensitive", False)
        and getattr(model, field_name)
    }

    for field_name in fields:
        value = getattr(model, field_name)
        if isinstance(value, BaseOperatorModel):
            sensitive_set.update(value.get_sensitive_fields_data())

    return sensitive_set
