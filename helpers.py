import os
import uuid


MIME_TYPES = {
    # Audio
    'mp3': 'audio/mpeg',
    'wav': 'audio/wav',
    'm4a': 'audio/mp4',
    'flac': 'audio/flac',
    'ogg': 'audio/ogg',
    'aac': 'audio/aac',
    'wma': 'audio/x-ms-wma',
    'opus': 'audio/opus',
    'aiff': 'audio/aiff',
    # Video
    'mp4': 'video/mp4',
    'mov': 'video/quicktime',
    'avi': 'video/x-msvideo',
    'mkv': 'video/x-matroska',
    'webm': 'video/webm',
    'flv': 'video/x-flv',
    'wmv': 'video/x-ms-wmv',
    'm4v': 'video/x-m4v',
    # Documentos
    'pdf': 'application/pdf',
    'doc': 'application/msword',
    'docx': 'application/vnd.openxmlformats-officedocument.wordprocessingml.document',
    'txt': 'text/plain; charset=utf-8',
    'rtf': 'application/rtf',
    # Imágenes
    'jpg': 'image/jpeg',
    'jpeg': 'image/jpeg',
    'png': 'image/png',
    'gif': 'image/gif',
    'svg': 'image/svg+xml',
    'webp': 'image/webp',
    'bmp': 'image/bmp',
    'tiff': 'image/tiff',
    # Archivos comprimidos
    'zip': 'application/zip',
    'rar': 'application/vnd.rar',
    '7z': 'application/x-7z-compressed',
    'tar': 'application/x-tar',
    'gz': 'application/gzip',
    'bz2': 'application/x-bzip2',
}


def is_valid_uuid(value):
    if not value:
        return False
    try:
        uuid.UUID(str(value))
        return True
    except (ValueError, AttributeError):
        return False


def to_uuid(value):
    if isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value))
    except (ValueError, TypeError):
        return None


def get_extension(filename):
    """Extensión en minúsculas sin punto ('' si no tiene)."""
    name = os.path.basename(filename or "")
    if '.' not in name.strip('.'):
        return ''
    return name.rsplit('.', 1)[-1].lower()


def get_mime_type(filename):
    return MIME_TYPES.get(get_extension(filename), 'application/octet-stream')


def basename(key):
    return (key or "").rstrip('/').rsplit('/', 1)[-1]


def dirname(key):
    key = (key or "").rstrip('/')
    if '/' not in key:
        return ''
    return key.rsplit('/', 1)[0]
