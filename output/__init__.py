from .encoder import ResultEncoder, find_first_image, parse_result_record

__all__ = ["ResultEncoder", "find_first_image", "parse_result_record"]
