"""Generate .env.example from the Settings defaults."""
import json
import sys
from pathlib import Path

root = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(root))

from backend.config import Settings  # noqa: E402

SECRETS = {"aws_access_key_id", "aws_secret_access_key"}

dest = root / '.env.example'

lines = ['# Copy to .env and fill in the AWS credentials']
for name, field in Settings.model_fields.items():
    if name in SECRETS or field.default is None:
        value = ''
    elif isinstance(field.default, list):
        value = json.dumps(field.default)
    elif isinstance(field.default, bool):
        value = str(field.default).lower()
    else:
        value = str(field.default)
    lines.append(f"{name.upper()}={value}")

dest.write_text('\n'.join(lines) + '\n')
print(f'Wrote template to {dest}')
