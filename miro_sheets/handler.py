import datetime
import json
import zipfile
from email.parser import BytesParser
from email.policy import default
from http.server import BaseHTTPRequestHandler
from typing import List
from urllib.parse import quote

from openpyxl.utils.exceptions import InvalidFileException
from pydantic import TypeAdapter, ValidationError

from miro_sheets.logger import get_logger
from miro_sheets.merged_writer import write_merged_workbook
from miro_sheets.models import Field, MergedRequest, TemplateRequest
from miro_sheets.reader import read_filled_template, read_workbook
from miro_sheets.template_writer import write_template_from_schema

logger = get_logger("handler")

MAX_UPLOAD_BYTES = 30 * 1024 * 1024        # 30 MB (workbook upload)
MAX_JSON_PAYLOAD_BYTES = 30 * 1024 * 1024  # 30 MB (schema / records JSON)

XLSX_MIME = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"
XLS_MIME = "application/vnd.ms-excel"
ACCEPTED_MIME_TYPES = {XLSX_MIME, XLS_MIME}
ACCEPTED_EXTENSIONS = {"xlsx", "xls"}

_GENERIC_PART_TYPES = {"application/octet-stream", "text/plain", ""}

WORKBOOK_PARSE_ERRORS = (InvalidFileException, zipfile.BadZipFile, KeyError, ValueError)

_FIELD_LIST = TypeAdapter(List[Field])


def _parse_form(payload, content_type):
    """Return (message, error message) for a multipart/form-data body."""
    try:
        header = f"Content-Type: {content_type}\r\n\r\n".encode("utf-8")
        message = BytesParser(policy=default).parsebytes(header + payload)
    except Exception:
        return None, "Failed to parse multipart payload"

    if message.get_content_maintype() != "multipart":
        return None, "Expected multipart/form-data"
    return message, None


def _find_form_part(message, field_name):
    for part in message.iter_parts():
        if part.get_content_disposition() != "form-data":
            continue
        if part.get_param("name", header="content-disposition") == field_name:
            return part
    return None


def extract_multipart_file(payload, content_type, field_name="file"):
    """Return (filename, part content type, bytes, error message) for ``field_name``."""
    message, error = _parse_form(payload, content_type)
    if error:
        return None, None, None, error

    part = _find_form_part(message, field_name)
    if part is None:
        return None, None, None, "Workbook file is required"

    part_type = part.get_content_type() if part.get("Content-Type") else ""
    return part.get_filename(), part_type, part.get_payload(decode=True), None


def extract_multipart_text(payload, content_type, field_name):
    """Return the UTF-8 text of a plain form field, or None when it is absent."""
    message, error = _parse_form(payload, content_type)
    if error:
        return None
    part = _find_form_part(message, field_name)
    if part is None:
        return None
    return (part.get_payload(decode=True) or b"").decode("utf-8", errors="replace")


def is_accepted_spreadsheet(filename, part_type):
    """xlsx/xls gate: a declared spreadsheet MIME type, or a generic type with a spreadsheet extension."""
    ext = filename.rsplit(".", 1)[-1].lower() if filename and "." in filename else ""
    if part_type in ACCEPTED_MIME_TYPES:
        return True
    if part_type in _GENERIC_PART_TYPES:
        return ext in ACCEPTED_EXTENSIONS
    return False


def _json_default(value):
    # Dates converted from filled templates are sent as ISO strings.
    if isinstance(value, (datetime.date, datetime.time)):
        return value.isoformat()
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def _attachment_header(filename):
    ascii_name = filename.encode("ascii", "replace").decode("ascii").replace("?", "_")
    return f"attachment; filename=\"{ascii_name}\"; filename*=UTF-8''{quote(filename)}"


class MiroSheetsHandler(BaseHTTPRequestHandler):
    server_version = "MiroSheets/0.1"

    def _send_json(self, status_code, payload):
        if status_code >= 400:
            logger.warning("Error response %d: %s", status_code, payload.get("message", ""))
        body = json.dumps(payload, ensure_ascii=False, default=_json_default).encode("utf-8")
        self.send_response(status_code)
        self.send_header("Content-Type", "application/json; charset=utf-8")
        self.send_header("Content-Length", str(len(body)))
        self._send_cors()
        self.end_headers()
        self.wfile.write(body)

    def _send_xlsx(self, xlsx_bytes, filename):
        self.send_response(200)
        self.send_header("Content-Type", "application/octet-stream")
        self.send_header("Content-Disposition", _attachment_header(filename))
        self.send_header("Content-Length", str(len(xlsx_bytes)))
        self._send_cors()
        self.end_headers()
        self.wfile.write(xlsx_bytes)

    def _send_cors(self):
        self.send_header("Access-Control-Allow-Origin", "*")
        self.send_header("Access-Control-Allow-Methods", "GET, POST, OPTIONS")
        self.send_header("Access-Control-Allow-Headers", "Content-Type")
        self.send_header("Access-Control-Expose-Headers", "Content-Disposition")

    def _read_body(self, max_bytes):
        """Read the request body; returns None after sending an error response."""
        content_length = self.headers.get("Content-Length")
        if not content_length:
            self._send_json(411, {"message": "Missing Content-Length header"})
            return None

        try:
            length = int(content_length)
        except ValueError:
            self._send_json(400, {"message": "Invalid Content-Length header"})
            return None

        if length <= 0:
            self._send_json(400, {"message": "El cuerpo de la petición está vacío."})
            return None

        if length > max_bytes:
            self._send_json(413, {"message": f"Los archivos no deben pesar más de {max_bytes // (1024 * 1024)}MB"})
            return None

        return self.rfile.read(length)

    def _read_json(self, model):
        payload = self._read_body(MAX_JSON_PAYLOAD_BYTES)
        if payload is None:
            return None

        try:
            body = json.loads(payload)
        except (json.JSONDecodeError, UnicodeDecodeError):
            self._send_json(400, {"message": "El cuerpo no es un JSON válido."})
            return None

        try:
            return model.model_validate(body)
        except ValidationError as exc:
            self._send_json(400, {
                "message": "La petición no cumple el formato esperado.",
                "errors": exc.errors(include_url=False, include_context=False, include_input=False),
            })
            return None

    def do_OPTIONS(self):
        self.send_response(204)
        self._send_cors()
        self.end_headers()

    def _handle_get(self, send_body=True):
        logger.info("Request: %s %s", self.command, self.path)
        clean = self.path.split("?", 1)[0].split("#", 1)[0]

        if clean == "/health":
            body = b'{"status":"ok"}'
            self.send_response(200)
            self.send_header("Content-Type", "application/json; charset=utf-8")
            self.send_header("Content-Length", str(len(body)))
            self.end_headers()
            if send_body:
                self.wfile.write(body)
            return

        if clean in ("/read", "/upload", "/template", "/merged"):
            self._send_json(405, {"message": "Method not allowed"})
            return

        self._send_json(404, {"message": "Not found"})

    def do_GET(self):
        self._handle_get(send_body=True)

    def do_HEAD(self):
        self._handle_get(send_body=False)

    def _read_upload(self):
        """Validate a workbook upload; returns (payload, content type, filename, bytes) or None."""
        content_type = self.headers.get("Content-Type")
        if not content_type:
            self._send_json(400, {"message": "Missing Content-Type header"})
            return None

        if "multipart/form-data" not in content_type:
            self._send_json(400, {"message": "Expected multipart/form-data"})
            return None

        payload = self._read_body(MAX_UPLOAD_BYTES)
        if payload is None:
            return None

        filename, part_type, file_bytes, error_message = extract_multipart_file(payload, content_type)
        if error_message:
            self._send_json(400, {"message": error_message})
            return None

        if not file_bytes:
            self._send_json(400, {"message": "El archivo está vacío."})
            return None

        if not is_accepted_spreadsheet(filename, part_type):
            self._send_json(415, {"message": "Solo se aceptan archivos .xlsx o .xls."})
            return None

        logger.info("Upload: %s (%s, %d bytes)", filename or "(sin nombre)", part_type or "-", len(file_bytes))
        return payload, content_type, filename, file_bytes

    def _handle_read(self):
        upload = self._read_upload()
        if upload is None:
            return
        _, _, _, file_bytes = upload

        try:
            columns = read_workbook(file_bytes)
        except WORKBOOK_PARSE_ERRORS as exc:
            logger.warning("Workbook could not be parsed: %s", exc)
            self._send_json(422, {"message": "No se pudo leer el archivo. Verifica que sea un .xlsx válido."})
            return

        self._send_json(200, {"columns": [column.model_dump() for column in columns]})

    def _handle_upload(self):
        upload = self._read_upload()
        if upload is None:
            return
        payload, content_type, filename, file_bytes = upload

        fields_text = extract_multipart_text(payload, content_type, "fields")
        if not fields_text:
            self._send_json(400, {"message": "Faltan los campos de la plantilla."})
            return

        try:
            fields = _FIELD_LIST.validate_json(fields_text)
        except ValidationError as exc:
            self._send_json(400, {
                "message": "Los campos de la plantilla no cumplen el formato esperado.",
                "errors": exc.errors(include_url=False, include_context=False, include_input=False),
            })
            return

        try:
            records = read_filled_template(file_bytes, fields)
        except WORKBOOK_PARSE_ERRORS as exc:
            logger.warning("Filled template could not be parsed (%s): %s", filename, exc)
            self._send_json(422, {"message": "No se pudo leer el archivo. Verifica que sea un .xlsx válido."})
            return

        self._send_json(200, {"records": records, "recordsLoaded": len(records)})

    def _handle_template(self):
        request = self._read_json(TemplateRequest)
        if request is None:
            return

        xlsx_bytes, filename = write_template_from_schema(
            request.template,
            filled_data=request.filled_data,
            include_help=request.include_help,
        )
        self._send_xlsx(xlsx_bytes, filename)

    def _handle_merged(self):
        request = self._read_json(MergedRequest)
        if request is None:
            return

        if not request.records:
            self._send_json(400, {"message": "No hay registros para exportar."})
            return

        xlsx_bytes, filename = write_merged_workbook(
            request.title,
            request.records,
            request.file_name,
            validators=request.validators,
        )
        self._send_xlsx(xlsx_bytes, filename)

    def do_POST(self):
        logger.info("Request: POST %s", self.path)
        clean_path = self.path.split("?", 1)[0].split("#", 1)[0]

        routes = {
            "/read": self._handle_read,
            "/upload": self._handle_upload,
            "/template": self._handle_template,
            "/merged": self._handle_merged,
        }
        route = routes.get(clean_path)
        if route is None:
            self._send_json(404, {"message": "Not found"})
            return

        try:
            route()
        except Exception:
            logger.exception("Unexpected error while handling %s", clean_path)
            self._send_json(500, {"message": "Error interno del servidor."})
