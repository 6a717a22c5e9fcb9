import json
import os

from loguru import logger

from card_cropper import config
from card_cropper.utils import resource_path

LANGUAGES = ('en', 'it')


class Translator:
    def __init__(self, config_file: str = config.CONFIG_FILE):
        self.config_file = config_file
        self.translations = {}
        self._load_translations()
        self.current_lang = self._load_language()

    def _load_translations(self):
        """Load translations from the bundled locale files"""
        locales_dir = resource_path('locales')

        for lang_code in LANGUAGES:
            lang_file = os.path.join(locales_dir, f'{lang_code}.json')
            try:
                with open(lang_file, 'r', encoding='utf-8') as f:
                    self.translations[lang_code] = json.load(f)
            except FileNotFoundError:
                logger.warning(f"Translation file not found: {lang_file}")
                self.translations[lang_code] = {}
            except (OSError, ValueError) as e:
                logger.error(f"Error loading translation file {lang_file}: {e}")
                self.translations[lang_code] = {}

    def get(self, key, **kwargs):
        text = self.translations.get(self.current_lang, {}).get(key)
        if text is None:
            # Fall back to English, then to the key itself
            text = self.translations.get('en', {}).get(key, key)
        if kwargs:
            return text.format(**kwargs)
        return text

    def set_language(self, lang, persist=True):
        if lang not in self.translations:
            logger.warning(f"Unknown language {lang!r}, keeping {self.current_lang}")
            return
        self.current_lang = lang
        if persist:
            self._save_language(lang)

    def _load_language(self):
        """Language preference from the settings file"""
        lang = config.load_settings(self.config_file).language
        return lang if lang in LANGUAGES else 'en'

    def _save_language(self, lang):
        """Save language preference, keeping the other settings in the file"""
        try:
            settings = {}
            if os.path.exists(self.config_file):
                with open(self.config_file, 'r', encoding='utf-8') as f:
                    settings = json.load(f)
            if not isinstance(settings, dict):
                settings = {}

            settings['language'] = lang

            os.makedirs(os.path.dirname(self.config_file), exist_ok=True)
            with open(self.config_file, 'w', encoding='utf-8') as f:
                json.dump(settings, f, ensure_ascii=False, indent=2)
        except (OSError, ValueError) as e:
            logger.error(f"Failed to save language config: {e}")


_translator = Translator()


def tr(key, **kwargs):
    return _translator.get(key, **kwargs)


def set_language(lang, persist=True):
    _translator.set_language(lang, persist)


def get_current_language():
    return _translator.current_lang
