import os
import sys

def main():
    """Run administrative tasks."""
    os.environ.setdefault("DJANGO_SETTINGS_MODULE", "rifaplatform.settings")
    try:
        from django.core.management import execute_from_command_line
    except ImportError as exc:
        raise ImportError(
            "No se pudo importar Django. ¿Está instalado y en tu virtualenv?"
        ) from exc
    execute_from_command_line(sys.argv)

if __name__ == "__main__":
    main()
