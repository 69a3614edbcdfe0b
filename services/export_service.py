"""
Export service - Generate the bulk upload failure report.

Lists every product that needs a retry (SKU, name, stage, reason, feed
row and the original feed cells) so the merchant can fix the feed or
images and upload only those again.
"""

from io import BytesIO
from typing import Optional

from openpyxl import Workbook
from openpyxl.styles import Font, Border, Side, PatternFill
import structlog

from models.catalog import PipelineSummary

logger = structlog.get_logger(__name__)

STAGE_LABELS = {
    "match": "Sin imagen",
    "upload": "Subida de imagen",
    "persist": "Guardado en catálogo",
}

FAILURE_HEADERS = ("SKU", "Producto", "Etapa", "Motivo", "Fila")


class ExportService:
    """Service for generating bulk upload report files."""

    def generate_failure_report(self, summary: PipelineSummary) -> BytesIO:
        """
        Generate the failure report workbook.

        Sheet "Resumen" carries the run counts; sheet "Errores" has one row
        per failed product.

        Args:
            summary: Terminal summary of a run

        Returns:
            BytesIO containing the Excel file
        """
        logger.info(
            "generating_failure_report",
            succeeded=summary.succeeded,
            failed=summary.failed,
        )

        wb = Workbook()

        # Styles
        bold_font = Font(bold=True)
        title_font = Font(bold=True, size=14)
        header_fill = PatternFill(start_color="E0E8FF", end_color="E0E8FF", fill_type="solid")
        critical_fill = PatternFill(start_color="FFE0E0", end_color="FFE0E0", fill_type="solid")
        thin_border = Border(
            bottom=Side(style="thin", color="000000")
        )

        # ===================
        # SUMMARY SHEET
        # ===================
        ws_summary = wb.active
        ws_summary.title = "Resumen"
        ws_summary.column_dimensions["A"].width = 35
        ws_summary.column_dimensions["B"].width = 15

        ws_summary["A1"] = "Carga masiva de productos"
        ws_summary["A1"].font = title_font

        counts = [
            ("Productos agregados", summary.succeeded),
            ("Requieren reintento", summary.failed),
            ("Omitidos (SKU ya existe)", summary.skipped_duplicates),
            ("Imágenes sin producto", summary.unmatched_images),
            ("Productos sin imagen", summary.unmatched_rows),
            ("Filas rechazadas del archivo", summary.rejected_rows),
        ]
        row = 3
        for label, value in counts:
            ws_summary[f"A{row}"] = label
            ws_summary[f"B{row}"] = value
            row += 1

        if summary.failed:
            ws_summary["B4"].font = Font(bold=True, color="CC0000")
        else:
            ws_summary["B3"].font = Font(bold=True, color="006600")

        # ===================
        # FAILURES SHEET
        # ===================
        ws = wb.create_sheet("Errores")

        # Original feed columns follow the fixed ones so the sheet can be
        # corrected and uploaded again
        source_columns = list(dict.fromkeys(
            column for failure in summary.failures for column, _ in failure.source_row
        ))
        headers = list(FAILURE_HEADERS) + source_columns

        for col, width in zip("ABCDE", (20, 40, 22, 60, 8)):
            ws.column_dimensions[col].width = width

        for col, header in enumerate(headers, start=1):
            cell = ws.cell(row=1, column=col, value=header)
            cell.font = bold_font
            cell.fill = header_fill
            cell.border = thin_border

        row = 2
        for failure in summary.failures:
            ws[f"A{row}"] = failure.sku
            ws[f"B{row}"] = failure.name
            ws[f"C{row}"] = STAGE_LABELS.get(failure.stage, failure.stage)
            ws[f"D{row}"] = failure.error
            ws[f"D{row}"].fill = critical_fill
            ws[f"E{row}"] = failure.row

            cells = dict(failure.source_row)
            for offset, column in enumerate(source_columns):
                ws.cell(row=row, column=len(FAILURE_HEADERS) + 1 + offset, value=cells.get(column))
            row += 1

        ws.freeze_panes = "A2"

        logger.info("failure_report_generated", rows=len(summary.failures))

        # Save to BytesIO
        output = BytesIO()
        wb.save(output)
        output.seek(0)

        return output


def build_failure_report(summary: PipelineSummary) -> bytes:
    """Failure report workbook as raw .xlsx bytes."""
    return get_export_service().generate_failure_report(summary).getvalue()


# Singleton instance
_export_service: Optional[ExportService] = None


def get_export_service() -> ExportService:
    """Get or create ExportService instance."""
    global _export_service
    if _export_service is None:
        _export_service = ExportService()
    return _export_service
