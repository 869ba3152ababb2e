from returns.io import IOFailure, IOResultE, IOSuccess
from returns.result import Failure, ResultE, Success


def unwrap_result[T](result: IOResultE[T] | ResultE[T]) -> T:
    match result:
        case IOSuccess(Success(value)) | Success(value):
            return value
        case _:
            assert False, f"failed to unwrap {result}"


def unwrap_failure(result: IOResultE | ResultE) -> Exception:
    match result:
        case IOFailure(Failure(error)) | Failure(error):
            return error
        case _:
            assert False, f"expected a failure, got {result}"
