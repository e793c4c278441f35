from io import BytesIO


def image_to_pdf_bytes(images):
    if not images:
        return b''
    rgb_images = [img.convert('RGB') for img in images]
    output = BytesIO()
    rgb_images[0].save(output, format='PDF', save_all=True, append_images=rgb_images[1:])
    return output.getvalue()


def format_money(amount, currency=''):
    text = f"{amount:,.2f}"
    return f"{currency} {text}".strip()
