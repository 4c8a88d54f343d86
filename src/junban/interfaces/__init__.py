from junban.util.ids import LENGTH_SHORTEND_ID

__all__ = ["LENGTH_SHORTEND_ID"]
